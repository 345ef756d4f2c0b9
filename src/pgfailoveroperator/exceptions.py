"""Exceptions raised by the pod migration core."""

__all__ = (
    "NoSwitchoverCandidateError",
    "PatroniError",
    "PodMigrationError",
    "PodWaitError",
    "PreconditionError",
    "RetryTimeoutError",
    "SubscriptionContractError",
)


class PodMigrationError(Exception):
    """A migration step hit a terminal condition.

    The caller decides whether the whole operation is retried on a later
    reconciliation pass.
    """


class NoSwitchoverCandidateError(PodMigrationError):
    """No running replica is eligible for promotion."""


class PodWaitError(PodMigrationError):
    """A wait on pod events timed out or was cancelled."""


class RetryTimeoutError(Exception):
    """An operation kept failing for its whole retry budget."""

    def __init__(self, message: str, attempts: int) -> None:
        super().__init__(message)
        self.attempts = attempts


class PreconditionError(RuntimeError):
    """An operation was asked to act on something it must not touch.

    This indicates a caller bug or an unanticipated race and is never
    retried.
    """


class SubscriptionContractError(PreconditionError):
    """The one-subscriber-per-pod contract of the pod event bus was broken."""


class PatroniError(Exception):
    """A call to the Patroni REST API failed."""
