"""
Error taxonomy for the pass lifecycle.

Every error carries the HTTP status it maps to; the handlers registered in
app.main turn them into ``{"detail": ...}`` JSON responses.
"""


class PassServiceError(Exception):
    status_code = 500
    detail = "Internal error"

    def __init__(self, detail: str | None = None):
        self.detail = detail or self.detail
        super().__init__(self.detail)


# ===== Configuration errors =====

class CertificatesNotConfiguredError(PassServiceError):
    """Signing material is missing or failed its liveness checks."""

    status_code = 503
    detail = "Pass signing is not configured"
    retry_after = 300


# ===== Validation errors =====

class InvalidQRPayloadError(PassServiceError):
    status_code = 400
    detail = "Malformed pass barcode payload"


class NotPersonalizedPassError(PassServiceError):
    status_code = 400
    detail = "Not a personalized pass"


class InvalidDeltaError(PassServiceError):
    status_code = 400
    detail = "Balance delta must be a non-negative integer"


class PassNotFoundError(PassServiceError):
    status_code = 404
    detail = "Pass not found"


class CardNotFoundError(PassServiceError):
    status_code = 404
    detail = "Loyalty card not found"


class CustomerNotFoundError(PassServiceError):
    status_code = 404
    detail = "Customer not found"


class PassInactiveError(PassServiceError):
    status_code = 409
    detail = "Pass has been deactivated"


class InvalidCardDesignError(PassServiceError):
    """A stored card design fails validation; the detail names the fields."""

    status_code = 422
    detail = "Loyalty card design is invalid"


# ===== Cryptographic errors =====

class SigningError(PassServiceError):
    """Opaque to callers; the cause is logged server-side."""

    status_code = 500
    detail = "Pass signing failed"


class ArchiveIntegrityError(SigningError):
    detail = "Pass archive does not match its manifest"


# ===== Transient errors =====

class BalanceConflictError(PassServiceError):
    status_code = 409
    detail = "Pass balance is being updated concurrently, retry the scan"
