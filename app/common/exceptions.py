"""
Error taxonomy for the lottery bin services.

Every error is an ``HTTPException`` so services can raise it directly and
FastAPI renders it with the right status. ``code`` is a stable identifier
for clients; ``detail`` is a safe, human-readable message.
"""
from fastapi import HTTPException, status


class LotteryBinError(HTTPException):
    """Base class for errors raised by the bin count services."""

    status_code = status.HTTP_400_BAD_REQUEST
    code = "LOTTERY_BIN_ERROR"

    def __init__(self, detail: str):
        super().__init__(status_code=self.status_code, detail=detail)
        self.message = detail

    def __str__(self):
        return f"[{self.code}] {self.message}"

    def to_dict(self) -> dict:
        return {"code": self.code, "message": self.message}


class InvalidArgumentError(LotteryBinError):
    """Malformed identifier; raised before any database access."""

    code = "INVALID_ARGUMENT"


class BinCountValidationError(LotteryBinError):
    """Well-formed but out-of-policy value, e.g. a bin count above the maximum."""

    code = "VALIDATION_ERROR"


class StoreNotFoundError(LotteryBinError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "NOT_FOUND"


class BinsBlockedByActivePacksError(LotteryBinError):
    """A shrink would have to deactivate bins that still hold active packs."""

    status_code = status.HTTP_409_CONFLICT
    code = "BLOCKED_BY_ACTIVE_PACKS"

    def __init__(self, blocked_count: int):
        self.blocked_count = blocked_count
        super().__init__(
            f"Cannot reduce bin count: {blocked_count} bin(s) that would be removed "
            f"have active packs. Move or close those packs first."
        )

    def to_dict(self) -> dict:
        return {**super().to_dict(), "blocked_count": self.blocked_count}


class TransactionTimeoutError(LotteryBinError):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    code = "TRANSACTION_TIMEOUT"
