"""Error taxonomy for on-call, escalation, and delivery."""

import httpx


class BeaconError(Exception):
    """Base class for all Beacon errors."""


class ConfigurationError(BeaconError):
    """Invalid configuration rejected at write time.

    Examples: a level referencing a nonexistent schedule, an override
    for a member outside the schedule, a reversed date range.
    """


class NotFoundError(BeaconError):
    """A referenced row does not exist."""


class DeliveryError(BeaconError):
    """A single delivery attempt failed.

    ``retryable`` is True for network failures, 5xx and 429 responses,
    False for any other 4xx.
    """

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        retryable: bool = True,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.retryable = retryable


def is_retryable_status(status_code: int) -> bool:
    if 400 <= status_code < 500:
        return status_code == 429
    return True


def classify_response(response: httpx.Response) -> DeliveryError | None:
    """Return a DeliveryError for a non-2xx response, None on success."""
    if response.is_success:
        return None
    return DeliveryError(
        f"HTTP {response.status_code}",
        status_code=response.status_code,
        retryable=is_retryable_status(response.status_code),
    )


def classify_exception(exc: Exception) -> DeliveryError:
    """Wrap a transport-level failure. These are always retryable."""
    message = str(exc) or exc.__class__.__name__
    return DeliveryError(message[:500], status_code=None, retryable=True)
