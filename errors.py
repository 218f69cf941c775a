from decimal import Decimal
from typing import Any, Dict, Optional


class LedgerError(Exception):
    """Base exception for ledger operations."""

    status_code = 500

    def __init__(self, message: str, code: str = "LEDGER_ERROR", details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.code = code
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "detail": str(self),
            "code": self.code,
            "details": self.details,
        }


class InvalidInput(LedgerError):
    """Malformed or out-of-range request data."""

    status_code = 400

    def __init__(self, field: str, value: Any, reason: str, code: str = "INVALID_INPUT"):
        super().__init__(
            f"Invalid {field}: {reason}",
            code=code,
            details={"field": field, "value": str(value), "reason": reason},
        )


class InvalidAmount(InvalidInput):
    """Amount is not a positive, finite value with at most two decimals."""

    def __init__(self, value: Any, reason: str = "amount must be a positive number"):
        super().__init__("amount", value, reason, code="INVALID_AMOUNT")


class CardNotFound(LedgerError):
    status_code = 404

    def __init__(self, card_id: int):
        super().__init__(
            f"Card {card_id} not found",
            code="CARD_NOT_FOUND",
            details={"card_id": card_id},
        )


class DuplicateCardNumber(LedgerError):
    status_code = 400

    def __init__(self, number: str):
        super().__init__(
            f"Card number {number} already exists",
            code="DUPLICATE_CARD_NUMBER",
            details={"number": number},
        )


class InsufficientBalance(LedgerError):
    """Expected business outcome: the debit would overdraw the card."""

    status_code = 400

    def __init__(self, card_id: int, required: Decimal, available: Decimal):
        super().__init__(
            f"Insufficient balance on card {card_id}: required {required}, available {available}",
            code="INSUFFICIENT_BALANCE",
            details={"card_id": card_id, "required": str(required), "available": str(available)},
        )


class StoreFailure(LedgerError):
    """The durable store failed or stayed busy after retries."""

    status_code = 503

    def __init__(self, operation: str, cause: Exception):
        super().__init__(
            f"Store failure during {operation}: {cause}",
            code="STORE_FAILURE",
            details={"operation": operation},
        )
        self.cause = cause
