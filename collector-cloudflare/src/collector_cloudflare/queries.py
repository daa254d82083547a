"""GraphQL query templates, one per analytics dataset.

Every query filters a single zone, takes an exclusive lower time bound and a
page size, and orders buckets by ``datetime`` ascending so a full page can be
continued from its last bucket.
"""

HTTP_REQUESTS_QUERY = """
query ($zone: String!, $start_time: Time!, $limit: Int!) {
  viewer {
    zones(filter: {zoneTag: $zone}) {
      zoneTag
      httpRequests1mGroups(limit: $limit, filter: {datetime_gt: $start_time}, orderBy: [datetime_ASC]) {
        dimensions {
          datetime
        }
        sum {
          countryMap {
            clientCountryName
            requests
            threats
            bytes
          }
          cachedRequests
          cachedBytes
          clientHTTPVersionMap {
            clientHTTPProtocol
            requests
          }
          responseStatusMap {
            edgeResponseStatus
            requests
          }
          threatPathingMap {
            threatPathingName
            requests
          }
        }
      }
    }
  }
}
"""

FIREWALL_EVENTS_QUERY = """
query ($zone: String!, $start_time: Time!, $limit: Int!) {
  viewer {
    zones(filter: {zoneTag: $zone}) {
      zoneTag
      firewallEventsAdaptiveGroups(limit: $limit, filter: {datetime_gt: $start_time, action_neq: "log"}, orderBy: [datetime_ASC]) {
        count
        dimensions {
          action
          datetime
          ruleId
          source
        }
      }
    }
  }
}
"""

HEALTH_CHECK_EVENTS_QUERY = """
query ($zone: String!, $start_time: Time!, $limit: Int!) {
  viewer {
    zones(filter: {zoneTag: $zone}) {
      zoneTag
      healthCheckEventsGroups(limit: $limit, filter: {datetime_gt: $start_time}, orderBy: [datetime_ASC]) {
        count
        dimensions {
          datetime
          failureReason
          healthCheckName
          healthStatus
          originResponseStatus
          region
          scope
        }
      }
    }
  }
}
"""
