"""Error taxonomy shared by the services and the HTTP layer.

Every error carries a ``user_message`` that is safe to show in the UI and
an optional ``field`` naming the form input it relates to (``"_form"``
for errors that are not tied to one input). Internal detail goes in the
exception's ``str()`` and is only ever logged.
"""


class PaperTradeError(Exception):
    """Base class for all expected service errors."""

    status_code = 400
    default_message = "Something went wrong. Please try again."

    def __init__(
        self,
        user_message: str | None = None,
        *,
        field: str = "_form",
        detail: str | None = None,
    ):
        self.user_message = user_message or self.default_message
        self.field = field
        super().__init__(detail or self.user_message)


class ValidationError(PaperTradeError):
    """Bad user input. No state was changed."""


class AuthError(PaperTradeError):
    """Login failed or no authenticated user."""

    status_code = 401
    default_message = "Invalid email or password."


class NotFoundError(PaperTradeError):
    """A user-owned record does not exist."""

    status_code = 404
    default_message = "Not found."


class ConfigError(PaperTradeError):
    """A required setting (e.g. the market-data API key) is missing."""

    status_code = 503
    default_message = "Market data is not configured."


class UpstreamError(PaperTradeError):
    """The market-data provider failed or returned unusable data."""

    status_code = 502
    default_message = "Market data unavailable right now. Please try again."


class QuoteError(UpstreamError):
    """No usable price for a symbol."""

    default_message = "Quote unavailable right now. Please try again."


class BusinessRuleError(PaperTradeError):
    """A trade was rejected by a business rule. No state was changed."""

    reason = "rejected"


class InsufficientFundsError(BusinessRuleError):
    reason = "insufficient_funds"
    default_message = "Not enough cash."

    def __init__(self, user_message: str | None = None, **kwargs):
        kwargs.setdefault("field", "balance")
        super().__init__(user_message, **kwargs)


class NoPositionError(BusinessRuleError):
    reason = "no_position"
    default_message = "You have no position to sell."

    def __init__(self, user_message: str | None = None, **kwargs):
        kwargs.setdefault("field", "qty")
        super().__init__(user_message, **kwargs)


class InsufficientSharesError(BusinessRuleError):
    reason = "insufficient_shares"
    default_message = "You don't have that many shares."

    def __init__(self, user_message: str | None = None, **kwargs):
        kwargs.setdefault("field", "qty")
        super().__init__(user_message, **kwargs)


class StoreError(PaperTradeError):
    """Persistence failed. The enclosing transaction was rolled back."""

    status_code = 500
