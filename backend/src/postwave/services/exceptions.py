"""Service error hierarchy for video synthesis, object storage and orchestration.

This module defines the exception hierarchy for service-level errors:
- ServiceError: Base for all service errors
- TransientError: Retryable errors (network, rate limits, timeouts)
- PermanentError: Non-retryable errors (authentication, validation)
- Orchestration errors raised synchronously to API callers
"""


class ServiceError(Exception):
    """Base exception for all service errors."""

    pass


class TransientError(ServiceError):
    """Transient error that may succeed on retry.

    Examples:
    - Network timeouts
    - Rate limit exceeded (429)
    - Service unavailable (500, 502, 503, 504)
    """

    pass


class PermanentError(ServiceError):
    """Permanent error that will not succeed on retry.

    Examples:
    - Authentication failures (401, 403)
    - Invalid request parameters (400)
    - Configuration errors
    """

    pass


# Synthesis API errors
class SynthesisRateLimitError(TransientError):
    """Rate limit exceeded (429)."""

    pass


class SynthesisNetworkError(TransientError):
    """Network timeout or service unavailable."""

    pass


class SynthesisAuthError(PermanentError):
    """Authentication failure (401, 403)."""

    pass


class SynthesisRequestError(PermanentError):
    """Request rejected by the provider (400, 404, unexpected payload)."""

    pass


# Object storage errors
class StorageUnavailableError(TransientError):
    """Storage endpoint unreachable or throttling."""

    pass


class StorageObjectNotFoundError(PermanentError):
    """Referenced object does not exist."""

    pass


class StorageAccessError(PermanentError):
    """Storage credentials rejected or location outside the configured bucket."""

    pass


# Orchestration errors (surfaced synchronously to callers)
class PreconditionError(ServiceError):
    """Request rejected before any job was created (bad input, missing image)."""

    pass


class JobNotFoundError(ServiceError):
    """Job does not exist."""

    pass


class JobAccessDeniedError(ServiceError):
    """Job belongs to a different owner."""

    pass


class ArtifactNotReadyError(ServiceError):
    """Job has no artifact because it has not completed."""

    pass
