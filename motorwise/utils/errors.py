"""Error handling utilities."""


class MotorwiseError(Exception):
    """Base exception for the Motorwise backend."""
    pass


class ConfigurationError(MotorwiseError):
    """Missing or invalid configuration."""
    pass


class StoreError(MotorwiseError):
    """Vehicle store operation error."""
    pass


class RecordNotFoundError(StoreError):
    """A listing or vehicle referenced by id does not exist."""
    pass


class DuplicateRegistrationError(StoreError):
    """A write would give one listing two active vehicles with the same registration."""
    pass


class QueueError(MotorwiseError):
    """Stage queue operation error."""
    pass


class EnrichmentError(MotorwiseError):
    """External enrichment service error (vision, register, history, generation)."""
    pass


class WebhookVerificationError(MotorwiseError):
    """Listing webhook signature verification failed."""
    pass
