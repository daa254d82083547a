"""Per zone/dataset record of the last analytics bucket already counted."""

import logging
from datetime import datetime, timedelta
from typing import Dict, Iterable, Optional, Tuple

from .errors import WatermarkRegressionError


logger = logging.getLogger(__name__)


class WatermarkTable:
    def __init__(self):
        self._marks: Dict[Tuple[str, str], datetime] = {}

    def __len__(self) -> int:
        return len(self._marks)

    def get(self, zone: str, dataset: str) -> Optional[datetime]:
        """Return the last counted observation time, or None if never seen."""
        return self._marks.get((zone, dataset))

    def advance(self, zone: str, dataset: str, timestamp: datetime) -> None:
        current = self._marks.get((zone, dataset))
        if current is not None and timestamp < current:
            raise WatermarkRegressionError(
                f"watermark for {zone}/{dataset} would move back from "
                f"{current.isoformat()} to {timestamp.isoformat()}"
            )
        self._marks[(zone, dataset)] = timestamp

    def cap_if_stale(
        self, zone: str, dataset: str, max_window: timedelta, now: datetime
    ) -> bool:
        """Pull a watermark up to ``now - max_window`` if it lags further behind.

        Quiet datasets never advance on their own, and Cloudflare rejects
        queries spanning more than its maximum range.
        """
        current = self._marks.get((zone, dataset))
        if current is None or now - current <= max_window:
            return False
        capped = now - max_window
        logger.info(
            f"Capping {dataset} watermark for zone {zone} from "
            f"{current.isoformat()} to {capped.isoformat()}"
        )
        self._marks[(zone, dataset)] = capped
        return True

    def prune(self, active_zones: Iterable[str]) -> int:
        """Forget watermarks of zones no longer listed; return how many went."""
        active = set(active_zones)
        gone = [key for key in self._marks if key[0] not in active]
        for key in gone:
            del self._marks[key]
        if gone:
            zones = sorted({zone for zone, _ in gone})
            logger.info(f"Dropped {len(gone)} watermark(s) for vanished zones {zones}")
        return len(gone)

    def snapshot(self) -> Dict[Tuple[str, str], datetime]:
        return dict(self._marks)
