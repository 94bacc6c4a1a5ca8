from __future__ import annotations

from typing import Any


class PricingError(Exception):
    """Base class for domain errors surfaced to API clients as ``{error, code}``."""

    status_code: int = 400
    code: str = "pricing_error"

    def __init__(self, message: str | None = None, **context: Any) -> None:
        self.message = message or self.__class__.__doc__ or self.code
        self.context = context
        super().__init__(self.message)


class ValidationError(PricingError):
    """Invalid input."""

    status_code = 400
    code = "validation_error"


class InvalidCodeFormat(ValidationError):
    """Promo code must contain between 3 and 15 letters or digits."""

    code = "invalid_code_format"


class OutOfRange(ValidationError):
    """Promo code value is outside the allowed range."""

    code = "value_out_of_range"


class DuplicateCode(ValidationError):
    """This promo code already exists."""

    status_code = 409
    code = "duplicate_code"


class InvalidDateRange(ValidationError):
    """End date must be after start date."""

    code = "invalid_date_range"


class NotFoundError(PricingError):
    status_code = 404
    code = "not_found"


class RuleNotFound(NotFoundError):
    """Promotion rule not found."""

    code = "rule_not_found"


class PromoCodeNotFound(NotFoundError):
    """Promo code not found."""

    code = "promo_code_not_found"


class EntityNotFound(NotFoundError):
    """Catalog entity not found."""

    code = "entity_not_found"


class StateConflictError(PricingError):
    status_code = 409
    code = "state_conflict"


class RuleInactive(StateConflictError):
    """This promotion rule is not active."""

    code = "rule_inactive"


class RuleNotInWindow(StateConflictError):
    """This promotion rule is outside its validity window."""

    code = "rule_not_in_window"


class PaymentRejected(StateConflictError):
    """Payment was not confirmed; the promo code stays pending."""

    code = "payment_rejected"


class BatchAborted(PricingError):
    """Batch was cancelled before all chunks were written."""

    status_code = 409
    code = "batch_aborted"

    def __init__(self, summary: Any, message: str | None = None) -> None:
        super().__init__(message)
        self.summary = summary


class StorageTransientError(PricingError):
    """Catalog storage is temporarily unavailable, retry later."""

    status_code = 503
    code = "storage_unavailable"
