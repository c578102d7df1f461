"""
Provider detection and API key placement.

Maps an endpoint URL to a known data vendor and injects credentials either
as a query parameter or as a request header.
"""

import os
import re

from finboard.models import ApiKeyLocation

ALPHAVANTAGE = "alphavantage"
FINNHUB = "finnhub"
UNKNOWN = "unknown"

KNOWN_PROVIDERS = (ALPHAVANTAGE, FINNHUB)

# hostname substring -> provider id
_PROVIDER_HOSTS = {
    "alphavantage.co": ALPHAVANTAGE,
    "finnhub.io": FINNHUB,
}

_KEY_PARAMS = {
    ALPHAVANTAGE: "apikey",
    FINNHUB: "token",
}

DEFAULT_KEY_PARAM = "apikey"


def detect_api_provider(url: str) -> str:
    """Return the provider id for a URL, or ``unknown``."""
    for host, provider in _PROVIDER_HOSTS.items():
        if host in (url or ""):
            return provider
    return UNKNOWN


def get_api_key_param_name(provider: str) -> str:
    """Query parameter the provider expects its key under."""
    return _KEY_PARAMS.get(provider, DEFAULT_KEY_PARAM)


def resolve_env(value: str | None) -> str | None:
    """Expand ``${ENV_VAR}`` placeholders with environment values."""
    if value is None:
        return None
    pattern = re.compile(r"\$\{(\w+)\}")
    def replacer(m: re.Match) -> str:
        env_val = os.getenv(m.group(1), "")
        if not env_val:
            raise ValueError(f"Environment variable {m.group(1)} is not set")
        return env_val
    return pattern.sub(replacer, value)


def apply_api_key(
    url: str,
    api_key: str | None,
    location: ApiKeyLocation = ApiKeyLocation.QUERY,
    param_name: str = DEFAULT_KEY_PARAM,
    header_name: str = "X-API-Key",
) -> tuple[str, dict[str, str]]:
    """
    Place ``api_key`` on the request.

    Returns:
        (final_url, headers). Query placement appends ``param=key`` with
        ``&`` or ``?``; header placement sends ``Bearer <key>`` when the
        header is ``Authorization`` and the raw key otherwise.
    """
    headers: dict[str, str] = {}
    if not api_key:
        return url, headers

    if location == ApiKeyLocation.HEADER:
        if header_name == "Authorization":
            headers[header_name] = f"Bearer {api_key}"
        else:
            headers[header_name] = api_key
        return url, headers

    separator = "&" if "?" in url else "?"
    return f"{url}{separator}{param_name}={api_key}", headers
