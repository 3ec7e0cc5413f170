from typing import Optional


class GatewayError(Exception):
    """
    Base class for all application-specific exceptions.
    captures the original exception for debugging if needed.
    """

    code = "GATEWAY_ERROR"

    def __init__(self, message: str, original_error: Optional[Exception] = None):
        super().__init__(message)
        self.message = message
        self.original_error = original_error


# --- Request / Setup Failures (never retried) ---


class ConfigurationError(GatewayError):
    """
    Raised for an unknown provider or model id, an operation the provider
    does not support, or a provider whose API key is not configured.
    """

    code = "CONFIGURATION_ERROR"


class ValidationException(GatewayError):
    """
    Raised when a setting falls outside what the provider declares
    (e.g. an unsupported DALL-E size or video resolution).
    """

    code = "VALIDATION_ERROR"


class MediaSourceError(ValidationException):
    """
    Raised when an edit/upscale source cannot be read
    (bad data URI, unreachable URL, path outside the media root).
    """

    code = "MEDIA_SOURCE_ERROR"


# --- Upstream Failures ---


class ProviderError(GatewayError):
    """
    Raised when the upstream HTTP call fails: network error, timeout,
    auth failure or any non-2xx response.
    The router falls back to the direct provider once on this error.
    """

    code = "PROVIDER_ERROR"

    def __init__(
        self,
        provider: str,
        message: str,
        status_code: Optional[int] = None,
        original_error: Optional[Exception] = None,
    ):
        super().__init__(f"{provider}: {message}", original_error)
        self.provider = provider
        self.status_code = status_code


class GenerationFailedError(GatewayError):
    """
    Raised when the provider reports a terminal failure status for a task.
    The upstream status string is kept verbatim.
    """

    code = "GENERATION_FAILED"

    def __init__(self, provider: str, status: str, reason: Optional[str] = None):
        message = f"{provider}: generation failed with status {status}"
        if reason:
            message = f"{message} ({reason})"
        super().__init__(message)
        self.provider = provider
        self.status = status
        self.reason = reason


class GenerationTimeoutError(GatewayError, TimeoutError):
    """
    Raised when a poll loop runs out of attempts.
    The upstream job is presumed abandoned.
    """

    code = "GENERATION_TIMEOUT"

    def __init__(self, provider: str, task_id: str, attempts: int):
        super().__init__(f"{provider}: task {task_id} did not finish after {attempts} polls")
        self.provider = provider
        self.task_id = task_id
        self.attempts = attempts


class PollCancelledError(GatewayError):
    """
    Raised when a poll loop is cancelled because the client went away.
    """

    code = "POLL_CANCELLED"

    def __init__(self, provider: str, task_id: str):
        super().__init__(f"{provider}: polling of task {task_id} was cancelled")
        self.provider = provider
        self.task_id = task_id


# --- Lookup Failures ---


class GenerationNotFoundError(GatewayError):
    """
    Raised when a generation id does not exist in the repository.
    Maps to HTTP 404.
    """

    code = "GENERATION_NOT_FOUND"


class JobNotFoundError(GatewayError):
    """
    Raised when a user requests a Job ID that doesn't exist.
    Maps to HTTP 404.
    """

    code = "JOB_NOT_FOUND"
