class EconomyError(ValueError):
    Kind = "Error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.Message = message


class NotFoundError(EconomyError):
    Kind = "NotFound"


class InvalidTransitionError(EconomyError):
    Kind = "InvalidTransition"


class InsufficientBalanceError(EconomyError):
    Kind = "InsufficientBalance"

    def __init__(self, message: str, balance: int | None = None, required: int | None = None) -> None:
        super().__init__(message)
        self.Balance = balance
        self.Required = required


class CouponExpiredError(EconomyError):
    Kind = "Expired"


class CouponExhaustedError(EconomyError):
    Kind = "Exhausted"


class CouponAlreadyUsedError(EconomyError):
    Kind = "AlreadyUsed"


class ConcurrencyConflictError(EconomyError):
    Kind = "ConcurrencyConflict"


class ValidationError(EconomyError):
    Kind = "Invalid"
