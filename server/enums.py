# enums.py

from enum import Enum

class Broker(str, Enum):
    EXNESS = "exness"
    BYBIT = "bybit"
    BINANCE = "binance"


class CopyStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    PAUSED = "paused"


class EarningStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    CANCELLED = "cancelled"

    def can_move_to(self, new: "EarningStatus") -> bool:
        """Earnings only move forward: pending -> paid | cancelled."""
        if self == new:
            return True
        return self == EarningStatus.PENDING
