from typing import Any, Dict, List, Optional
from pydantic import BaseModel


class Zone(BaseModel):
    id: str
    name: str
    status: str = ""


class ZoneList(BaseModel):
    success: bool = True
    result: List[Zone] = []
    errors: List[Dict[str, Any]] = []

    def active_zones(self) -> Dict[str, str]:
        return {zone.id: zone.name for zone in self.result if zone.status != "pending"}


class GraphQLError(BaseModel):
    message: str
    path: Optional[List[Any]] = None
    extensions: Optional[Dict[str, Any]] = None


class GraphQLResponse(BaseModel):
    data: Optional[Dict[str, Any]] = None
    errors: Optional[List[GraphQLError]] = None
