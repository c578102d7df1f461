"""
Error hierarchy shared by the fetch, normalization and store layers.
"""


class FinboardError(Exception):
    """Base class for all dashboard errors."""


# ── Fetch ────────────────────────────────────────────

class FetchError(FinboardError):
    """The request for a widget could not produce a JSON payload."""


class NetworkError(FetchError):
    """Transport failure (DNS, connect, timeout...)."""

    def __init__(self, url: str, reason: str):
        self.url = url
        self.reason = reason
        super().__init__(f"Network error: {reason}")


class HttpStatusError(FetchError):
    """Non-2xx response; keeps the status and the start of the body."""

    def __init__(self, status: int, body_excerpt: str):
        self.status = status
        self.body_excerpt = body_excerpt
        super().__init__(f"API Error {status}: {body_excerpt}")


class ParseError(FetchError):
    """Successful response whose body is not JSON."""

    def __init__(self, message: str = "Invalid JSON response"):
        super().__init__(message)


class UnconfiguredEndpointError(FetchError):
    def __init__(self, widget_id: str = ""):
        self.widget_id = widget_id
        super().__init__("Please configure API endpoint")


# ── Normalization ────────────────────────────────────

class ProviderRateLimitError(FinboardError):
    """A JSON body carrying a provider error / rate-limit notice."""

    def __init__(self, message: str, provider: str = "unknown"):
        self.message = message
        self.provider = provider
        super().__init__(message)


class NormalizationError(FinboardError):
    """The payload has none of the shapes a consumer needs."""


# ── Store ────────────────────────────────────────────

class DuplicateWidgetError(FinboardError):
    def __init__(self, widget_id: str):
        self.widget_id = widget_id
        super().__init__(f"Widget '{widget_id}' already exists")


class UnknownProviderError(FinboardError):
    def __init__(self, provider: str):
        self.provider = provider
        super().__init__(f"Unknown provider: {provider}")
