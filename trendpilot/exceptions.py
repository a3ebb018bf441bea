"""
Custom exception classes for the TrendPilot agent scheduler.

Exceptions are raised close to the failure and carry enough context to
log the agent, platform, or operation involved. The cycle runner is the
single place where per-agent exceptions are converted into typed
failure results; everywhere else they propagate.

Hierarchy:
    Exception
    +-- TrendPilotError (base for all domain errors)
    |   +-- TrendSourceError
    |   +-- NoCandidatesError
    |   +-- ContentGenerationError
    |   +-- PublishError
    |   +-- CycleGuardError
    +-- ValidationError (ValueError)
    +-- DatabaseError
    +-- ConfigurationError
    +-- RetryExhaustedError
"""

# =============================================================================
# BASE EXCEPTION
# =============================================================================


class TrendPilotError(Exception):
    """Base exception for all scheduler and selection errors."""

    pass


# =============================================================================
# CORE EXCEPTIONS
# =============================================================================


class ValidationError(ValueError):
    """Raised when input validation fails."""

    pass


class DatabaseError(Exception):
    """Raised when database operations fail."""

    pass


class ConfigurationError(Exception):
    """Raised when system configuration is invalid."""

    pass


class RetryExhaustedError(Exception):
    """Raised when all retry attempts have been exhausted.

    Attributes:
        operation: Name of the operation that was retried.
        attempts: Total number of attempts made.
        last_error: The last exception raised before giving up.
    """

    def __init__(self, operation: str, attempts: int, last_error: Exception):
        self.operation = operation
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(
            f"{operation} failed after {attempts} attempts. "
            f"Last error: {last_error}"
        )


# =============================================================================
# TREND SELECTION EXCEPTIONS
# =============================================================================


class TrendSourceError(TrendPilotError):
    """Raised when the trend source aggregator cannot reach any provider."""

    pass


class NoCandidatesError(TrendPilotError):
    """Raised when fetching and filtering produced an empty candidate pool.

    Retryable: the selector backs off and fetches again before falling
    back to the evergreen pool.
    """

    pass


# =============================================================================
# AGENT CYCLE EXCEPTIONS
# =============================================================================


class ContentGenerationError(TrendPilotError):
    """Raised when the content generator returns nothing usable."""

    pass


class PublishError(TrendPilotError):
    """Raised when a publisher rejects or fails to deliver a post.

    Attributes:
        platform: Destination platform name.
        reason: Error text reported by the publisher.
    """

    def __init__(self, platform: str, reason: str):
        self.platform = platform
        self.reason = reason
        super().__init__(f"Publishing to {platform} failed: {reason}")


class CycleGuardError(TrendPilotError):
    """Raised when the processing-cycle guard is released without being held."""

    pass


# =============================================================================
# PUBLIC API
# =============================================================================

__all__ = [
    # Base
    "TrendPilotError",
    # Core
    "ValidationError",
    "DatabaseError",
    "ConfigurationError",
    "RetryExhaustedError",
    # Trend selection
    "TrendSourceError",
    "NoCandidatesError",
    # Agent cycle
    "ContentGenerationError",
    "PublishError",
    "CycleGuardError",
]
