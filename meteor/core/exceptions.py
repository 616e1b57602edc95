class MeteorError(Exception):
    """Base exception for stream extraction errors."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(self.message)


class ProviderError(MeteorError):
    """Raised by a provider when it cannot yield a stream.

    `cacheable` failures are confirmed negatives and get written to the cache,
    everything else is treated as transient.
    """

    cacheable = False


class PoolExhausted(ProviderError):
    """No browser page slot became available within the admission wait."""

    def __init__(self, max_pages: int, timeout: float):
        self.max_pages = max_pages
        self.timeout = timeout
        super().__init__(
            f"No available browser slots after {timeout}s (max: {max_pages})"
        )


class UpstreamUnreachable(ProviderError):
    """Network error, timeout or unexpected HTTP status from a collaborator."""


class NoManifestFound(ProviderError):
    cacheable = True

    def __init__(self, message: str = "No M3U8 found"):
        super().__init__(message)


class NoStreamFound(ProviderError):
    cacheable = True

    def __init__(self, message: str = "No stream found"):
        super().__init__(message)


class DecodeFailure(MeteorError):
    """A stage of the token decoding pipeline rejected its input."""


class ClassificationUnavailable(MeteorError):
    """The metadata collaborator could not classify the item."""
