"""Error taxonomy for marketplace operations.

Every error aborts the whole operation: services raise before committing, so
nothing the operation touched survives.
"""

from __future__ import annotations

from fastapi import HTTPException


class MarketError(HTTPException):
    status_code = 400
    kind = "error"

    def __init__(self, detail: str):
        super().__init__(status_code=self.status_code, detail=detail)


class NotFound(MarketError):
    status_code = 404
    kind = "not_found"


class Unauthorized(MarketError):
    status_code = 403
    kind = "unauthorized"


class InvalidState(MarketError):
    status_code = 409
    kind = "invalid_state"


class InvalidInput(MarketError):
    status_code = 400
    kind = "invalid_input"


class InsufficientFunds(MarketError):
    status_code = 402
    kind = "insufficient_funds"


class AlreadyExists(MarketError):
    status_code = 409
    kind = "already_exists"


class TransferFailed(MarketError):
    status_code = 502
    kind = "transfer_failed"


class ReentrantCall(MarketError):
    status_code = 423
    kind = "reentrant_call"
