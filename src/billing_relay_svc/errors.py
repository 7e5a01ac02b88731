class BillingRelayError(Exception):
    """Base class for errors raised by the billing relay service."""


class ConfigurationError(BillingRelayError):
    """Raised when a required setting is missing or malformed."""


class StorageError(BillingRelayError):
    """Raised when records cannot be read from the database."""


class NotFoundError(BillingRelayError):
    """Raised when a referenced user, subscription or record does not exist."""


class ProviderError(BillingRelayError):
    """Raised when the payment provider keeps failing after retries."""


class EmailDeliveryError(BillingRelayError):
    """Raised when the email provider rejects or fails to send a message."""
