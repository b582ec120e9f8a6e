"""Error hierarchy for the attendance core.

Gateway failures are split into transient (timeouts, 5xx, rate limits) and
permanent (rejected requests, malformed payloads) so the report client's
tenacity decorator can retry the former. The persistence gateway itself never
retries: a failed save is retried by the user pressing save again.
"""


class FrequenciaError(Exception):
    """Base exception for all attendance core errors."""

    pass


class ConfigurationMissingError(FrequenciaError):
    """No backend URL configured.

    Blocks the initial load and should be surfaced as a setup prompt,
    not as a crash.
    """

    pass


class GatewayError(FrequenciaError):
    """A call to the remote backend failed."""

    pass


class TransientError(GatewayError):
    """Temporary failure that may succeed if attempted again.

    Examples: network timeouts, connection resets, 503 Service Unavailable.
    """

    pass


class RateLimitError(TransientError):
    """Rate limit exceeded (HTTP 429) - needs a longer backoff."""

    pass


class PermanentError(GatewayError):
    """Failure that won't succeed if attempted again.

    Examples: 4xx responses, error payloads from the script, undecodable JSON.
    """

    pass


class LoadFailureError(FrequenciaError):
    """The initial dataset could not be loaded.

    The controller is left in an empty, safe state when this is raised.
    """

    pass


class FlushFailureError(FrequenciaError):
    """One or more batched attendance writes failed.

    The pending-change queue is retained intact; the caller should notify the
    user and let them save again.
    """

    def __init__(self, message: str, failed_keys: list | None = None, causes: list | None = None):
        super().__init__(message)
        self.failed_keys = failed_keys or []
        self.causes = causes or []


class StateDivergedError(FrequenciaError):
    """A destructive change failed remotely after being applied locally.

    Local and server state may differ; a full reload has been attempted.
    """

    pass
