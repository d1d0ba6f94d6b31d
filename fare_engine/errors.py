"""
Error taxonomy for the fare engine.

Every error carries the HTTP status it maps to and a short public message.
Internal details (provider output, stack traces, offending names) are passed as
the exception message for logging only and never sent to callers.
"""
from typing import Optional

ESTIMATE_FAILED = "Failed to fetch fare estimate from AI model."


class FareEngineError(Exception):
    status_code: int = 500
    public_message: str = "Internal server error"

    def __init__(self, detail: str = "", public_message: Optional[str] = None):
        super().__init__(detail or self.public_message)
        if public_message:
            self.public_message = public_message


class MissingParameter(FareEngineError):
    status_code = 400
    public_message = "Missing required parameter"


class DepotNotFound(FareEngineError):
    status_code = 404
    public_message = "Depot not found"

    def __init__(self, names):
        self.names = list(names)
        super().__init__(f"unknown depot(s): {', '.join(self.names)}")


class NoMatchingRateTier(FareEngineError):
    status_code = 422
    public_message = "No rate information found for the selected bus configuration."


class InvalidEstimateResponse(FareEngineError):
    status_code = 502
    public_message = ESTIMATE_FAILED


class ProviderFailure(FareEngineError):
    status_code = 502
    public_message = ESTIMATE_FAILED


class ProviderTimeout(ProviderFailure):
    status_code = 504


class InternalError(FareEngineError):
    status_code = 500
