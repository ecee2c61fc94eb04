import pytest
from fastapi import HTTPException

from chorebank.core.errors import (
    ConcurrencyConflictError,
    CouponAlreadyUsedError,
    CouponExhaustedError,
    CouponExpiredError,
    InsufficientBalanceError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from chorebank.core.http import HandleEconomyError, StatusCodeForError


@pytest.mark.parametrize(
    "error, expected",
    [
        (NotFoundError("missing"), 404),
        (InvalidTransitionError("wrong state"), 409),
        (InsufficientBalanceError("short", balance=1, required=5), 409),
        (CouponExpiredError("expired"), 400),
        (CouponExhaustedError("exhausted"), 400),
        (CouponAlreadyUsedError("used"), 400),
        (ValidationError("bad"), 400),
        (ConcurrencyConflictError("busy"), 503),
    ],
)
def test_status_codes(error, expected):
    assert StatusCodeForError(error) == expected


def test_handle_economy_error_raises_http_exception():
    with pytest.raises(HTTPException) as exc_info:
        HandleEconomyError(InsufficientBalanceError("Insufficient balance", balance=40, required=50))
    assert exc_info.value.status_code == 409
    assert exc_info.value.detail == "Insufficient balance"
