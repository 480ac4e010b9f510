from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional, Tuple

from .util.time import days_remaining


@dataclass(frozen=True)
class Reservation:
    """A purchased capacity commitment, read-only and fetched fresh on every run."""

    reservation_id: str
    sku_name: str
    effective_date: Optional[datetime]
    expiry_date: datetime
    quantity: int
    display_name: Optional[str] = None
    provisioning_state: Optional[str] = None

    def days_remaining(self, now: datetime) -> int:
        return days_remaining(self.expiry_date, now)


@dataclass(frozen=True)
class ReservationSet:
    """
    Inventory split at a single reference instant.
    Membership is fixed at partition time.
    """

    active: Tuple[Reservation, ...]
    expired: Tuple[Reservation, ...]
    reference_time: datetime

    @property
    def total(self) -> int:
        return len(self.active) + len(self.expired)


@dataclass(frozen=True)
class SummaryMetrics:
    total_active: int = 0
    total_expired: int = 0
    expiring_soon: int = 0
    success: bool = True
    # Failure records carry only the flag.
    counters: bool = field(default=True, repr=False)

    @classmethod
    def failed(cls) -> SummaryMetrics:
        return cls(success=False, counters=False)

    def to_payload(self) -> Dict[str, Any]:
        if not self.counters:
            return {"Success": int(self.success)}
        return {
            "TotalActive": self.total_active,
            "TotalExpired": self.total_expired,
            "ExpiringSoon": self.expiring_soon,
            "Success": int(self.success),
        }
