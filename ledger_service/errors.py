"""Domain and conflict errors raised by the ledger engine."""
from common.error_handling import BusinessLogicError, ErrorCodes, ServiceError


class InsufficientFunds(BusinessLogicError):
    def __init__(self, user_id: str, balance: int, required: int):
        self.user_id = user_id
        self.balance = balance
        self.required = required
        super().__init__(
            ErrorCodes.INSUFFICIENT_FUNDS,
            "Insufficient funds",
            context={"userId": user_id, "balance": str(balance), "required": str(required)},
        )


class SelfTransfer(BusinessLogicError):
    def __init__(self, user_id: str, message: str = "Cannot transfer to self"):
        self.user_id = user_id
        super().__init__(ErrorCodes.SELF_TRANSFER, message, context={"userId": user_id})


class InvalidAmount(BusinessLogicError):
    def __init__(self, amount, field: str = "amount", message: str = "Amount must be a positive integer"):
        self.amount = amount
        super().__init__(
            ErrorCodes.INVALID_AMOUNT,
            message,
            field=field,
            context={"amount": str(amount)},
        )


class BalanceOverflow(BusinessLogicError):
    def __init__(self, user_id: str, balance: int, delta: int):
        self.user_id = user_id
        super().__init__(
            ErrorCodes.BALANCE_OVERFLOW,
            "Balance would exceed the maximum supported value",
            context={"userId": user_id, "balance": str(balance), "delta": str(delta)},
        )


class InvalidSide(BusinessLogicError):
    def __init__(self, side):
        super().__init__(
            ErrorCodes.INVALID_SIDE,
            "Side must be 'heads' or 'tails'",
            field="challengerSide",
            context={"side": str(side)},
        )


class InvalidStatus(BusinessLogicError):
    def __init__(self, status):
        super().__init__(ErrorCodes.INVALID_STATUS, "Unknown game status", field="status", context={"status": str(status)})


class InvalidPagination(BusinessLogicError):
    def __init__(self, limit, offset, max_limit: int):
        super().__init__(
            ErrorCodes.INVALID_PAGINATION,
            f"limit must be between 1 and {max_limit} and offset must not be negative",
            context={"limit": limit, "offset": offset},
        )


class NotFound(BusinessLogicError):
    def __init__(self, game_id: str):
        self.game_id = game_id
        super().__init__(ErrorCodes.GAME_NOT_FOUND, "Bet not found", context={"gameId": game_id})


class AlreadyResolved(BusinessLogicError):
    def __init__(self, game_id: str, status: str):
        self.game_id = game_id
        self.status = status
        super().__init__(
            ErrorCodes.ALREADY_RESOLVED,
            "Bet already resolved",
            context={"gameId": game_id, "status": status},
        )


class Forbidden(BusinessLogicError):
    def __init__(self, game_id: str, user_id: str):
        super().__init__(
            ErrorCodes.FORBIDDEN,
            "Only the challenged opponent can resolve this bet",
            context={"gameId": game_id, "userId": user_id},
        )


class NotAuthorized(BusinessLogicError):
    def __init__(self, user_id: str, allowlist_configured: bool = True):
        message = "Forbidden"
        if not allowlist_configured:
            message = "Owner allowlist is not configured. Set OWNER_USER_IDS in the API environment."
        super().__init__(ErrorCodes.NOT_AUTHORIZED, message, context={"userId": user_id})


class TransactionConflictError(ServiceError):
    """Serialization conflicts outlasted every retry; the caller may try again."""

    def __init__(self, attempts: int, original_error: Exception = None):
        self.attempts = attempts
        super().__init__(
            ErrorCodes.SERVICE_UNAVAILABLE,
            "The ledger is temporarily unavailable, please retry",
            original_error=original_error,
        )


class LedgerUnavailable(ServiceError):
    def __init__(self, original_error: Exception = None):
        super().__init__(ErrorCodes.DATABASE_ERROR, "The ledger store is unavailable", original_error=original_error)
