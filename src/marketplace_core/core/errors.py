"""Custom exception hierarchy for the marketplace core."""

from __future__ import annotations


class MarketplaceError(Exception):
    """Base exception for all marketplace core errors."""


# --- Configuration ---
class ConfigError(MarketplaceError):
    """Invalid or missing configuration."""


class OutboxNotConfiguredError(ConfigError):
    """An outbox operation was requested on a bus without an outbox store."""


# --- Domain ---
class DomainError(MarketplaceError):
    """A business rule rejected the operation."""


class ValidationError(DomainError):
    """Aggregate data failed validation (missing or malformed fields)."""


class InvalidStateError(DomainError):
    """The aggregate's current state does not permit the operation."""

    def __init__(
        self,
        message: str,
        *,
        aggregate: str = "",
        aggregate_id: str = "",
        current_state: str = "",
        action: str = "",
    ) -> None:
        super().__init__(message)
        self.aggregate = aggregate
        self.aggregate_id = aggregate_id
        self.current_state = current_state
        self.action = action


class AlreadyVerifiedError(InvalidStateError):
    """The attribute being verified is already verified."""


class AlreadyProcessedError(InvalidStateError):
    """A final decision has already been taken on the aggregate."""


class InvalidTokenError(DomainError):
    """A one-time token is expired, used, cancelled, or does not match."""


class IncompleteProfileError(DomainError):
    """Required fields are missing for the requested operation."""


class UnauthorizedError(DomainError):
    """The acting party is not allowed to perform the operation."""

    def __init__(self, message: str, *, actor_id: str = "", action: str = "") -> None:
        super().__init__(message)
        self.actor_id = actor_id
        self.action = action


class FeatureDisabledError(DomainError):
    """The operation is gated behind a feature flag that is off."""

    def __init__(self, flag_name: str) -> None:
        super().__init__(f"Feature {flag_name!r} is not enabled")
        self.flag_name = flag_name


# --- Lookup ---
class NotFoundError(MarketplaceError):
    """A requested record does not exist."""


class AggregateNotFoundError(NotFoundError):
    """No aggregate with the given id exists in the repository."""

    def __init__(self, aggregate: str, aggregate_id: str) -> None:
        super().__init__(f"{aggregate} {aggregate_id!r} not found")
        self.aggregate = aggregate
        self.aggregate_id = aggregate_id


# --- Delivery ---
class DeliveryError(MarketplaceError):
    """One or more subscribers failed while redelivering an event."""

    def __init__(self, event_type: str, failures: list[str]) -> None:
        joined = "; ".join(failures)
        super().__init__(
            f"{len(failures)} handler(s) failed for {event_type}: {joined}"
        )
        self.event_type = event_type
        self.failures = list(failures)
