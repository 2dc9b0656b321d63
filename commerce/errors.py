"""
Error Taxonomy
==============
Every failure the commerce backend or the agent loop can report.

Each error carries a stable `code` (shown to the model inside tool results and
to HTTP clients in the `type` field) and the HTTP status it maps to.

Propagation:
  - HTTP callers get {"error": message, "type": code} with `status_code`.
  - Inside the tool loop the same payload becomes the tool result, so the
    model can correct itself instead of the conversation aborting.
  - LoopExceeded is the only error that always ends the request.
"""


class CheckoutError(Exception):
    code = "checkout_error"
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_payload(self) -> dict:
        return {"error": self.message, "type": self.code}


class NotFound(CheckoutError):
    """Missing product, checkout session or order."""
    code = "not_found"
    status_code = 404


class InvalidInput(CheckoutError):
    """Missing required field, non-positive amount, malformed tool arguments."""
    code = "invalid_input"
    status_code = 400


class InvalidState(CheckoutError):
    """Operation not allowed from the session's current status."""
    code = "invalid_state"
    status_code = 409


class AmountMismatch(CheckoutError):
    code = "amount_mismatch"
    status_code = 409


class CurrencyMismatch(CheckoutError):
    code = "currency_mismatch"
    status_code = 409


class PaymentFailed(CheckoutError):
    """The provider reports the referenced payment did not succeed."""
    code = "payment_failed"
    status_code = 402


class UpstreamFailure(CheckoutError):
    """Model, payment provider, or remote tool server unavailable or erroring."""
    code = "upstream_failure"
    status_code = 502


class LoopExceeded(CheckoutError):
    """The tool-calling conversation hit its iteration cap."""
    code = "loop_exceeded"
    status_code = 500
