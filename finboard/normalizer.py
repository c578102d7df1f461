"""
Response normalizer: turns arbitrary JSON payloads into flat, addressable
fields.

Shape recognition is a ranked list of rules. Each rule pairs a detector with
an extractor; the first rule whose detector matches (and whose extractor
produces something) wins, and generic flattening is the fallback.
"""

import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Optional

from finboard.errors import NormalizationError, ProviderRateLimitError
from finboard.models import FieldDiscovery
from finboard.providers import ALPHAVANTAGE, FINNHUB, UNKNOWN

logger = logging.getLogger(__name__)

TIME_SERIES_MARKER = "Time Series"
ERROR_MARKERS = ("Error Message", "Information", "Note")
ARRAY_FIELD = "array"

_DATE_KEY = re.compile(r"^\d{4}-\d{2}-\d{2}")


class ShapeKind(str, Enum):
    ERROR = "error"
    TIME_SERIES = "time_series"
    FINNHUB_QUOTE = "finnhub_quote"
    FINNHUB_PROFILE = "finnhub_profile"
    FINNHUB_CANDLE = "finnhub_candle"
    GENERIC = "generic"


# ── Flattening ────────────────────────────────────────

def flatten(obj: Any, prefix: str = "", result: dict[str, Any] | None = None) -> dict[str, Any]:
    """
    Flatten nested dicts into ``{"a.b.c": leaf}``.

    Lists, primitives and None are leaves and are stored verbatim. A
    top-level list is addressed by index (``"0.name"``).
    """
    if result is None:
        result = {}
    if isinstance(obj, dict):
        items = obj.items()
    elif isinstance(obj, list) and not prefix:
        items = ((str(i), v) for i, v in enumerate(obj))
    else:
        return result

    for key, value in items:
        path = f"{prefix}.{key}" if prefix else str(key)
        if isinstance(value, dict):
            flatten(value, path, result)
        else:
            result[path] = value
    return result


def get_value_by_path(obj: Any, path: str) -> Any:
    """Dotted lookup into a nested object; None when any part is missing."""
    current = obj
    for part in path.split("."):
        if isinstance(current, dict):
            current = current.get(part)
        elif isinstance(current, list) and part.isdigit() and int(part) < len(current):
            current = current[int(part)]
        else:
            return None
        if current is None:
            return None
    return current


# ── Shape helpers ─────────────────────────────────────

def error_message(payload: Any) -> Optional[str]:
    """Provider error / notice carried by an otherwise successful body."""
    if not isinstance(payload, dict):
        return None
    for marker in ERROR_MARKERS:
        if payload.get(marker):
            return str(payload[marker])
    return None


def find_time_series_key(payload: Any) -> Optional[str]:
    if not isinstance(payload, dict):
        return None
    for key, value in payload.items():
        if TIME_SERIES_MARKER in key and isinstance(value, dict):
            return key
    return None


# (field name, accepted numbered keys)
_TIME_SERIES_FIELDS = (
    ("open", ("1. open",)),
    ("high", ("2. high",)),
    ("low", ("3. low",)),
    ("close", ("4. close",)),
    ("adjusted close", ("5. adjusted close",)),
    ("volume", ("5. volume", "6. volume")),
    ("dividend amount", ("7. dividend amount",)),
)


def _first_present(values: dict, keys: tuple[str, ...]) -> Any:
    for key in keys:
        if values.get(key) not in (None, ""):
            return values[key]
    return None


def extract_time_series_fields(payload: Any) -> dict[str, Any]:
    """
    Canonical OHLCV fields of a time-series response, sampled from its
    first (most recent) date entry. Empty when nothing is recognized.
    """
    key = find_time_series_key(payload)
    if key is None:
        return {}
    series = payload[key]
    first_date = next(iter(series), None)
    if first_date is None or not isinstance(series[first_date], dict):
        return {}

    entry = series[first_date]
    fields = {}
    for name, keys in _TIME_SERIES_FIELDS:
        value = _first_present(entry, keys)
        if value is not None:
            fields[name] = value
    return fields


_FINNHUB_QUOTE_FIELDS = {
    "c": "current",
    "d": "change",
    "dp": "percent_change",
    "h": "high",
    "l": "low",
    "o": "open",
    "pc": "previous_close",
    "t": "timestamp",
}

_FINNHUB_PROFILE_FIELDS = {
    "country": "country",
    "currency": "currency",
    "exchange": "exchange",
    "name": "name",
    "ticker": "ticker",
    "ipo": "ipo",
    "marketCapitalization": "market_cap",
    "shareOutstanding": "shares_outstanding",
    "logo": "logo",
    "phone": "phone",
    "weburl": "weburl",
    "finnhubIndustry": "industry",
}


def _rename(data: dict, table: dict[str, str]) -> dict[str, Any]:
    return {new: data[old] for old, new in table.items() if old in data}


def parse_finnhub_quote(data: dict) -> dict[str, Any]:
    return _rename(data or {}, _FINNHUB_QUOTE_FIELDS)


def parse_finnhub_profile(data: dict) -> dict[str, Any]:
    return _rename(data or {}, _FINNHUB_PROFILE_FIELDS)


def summarize_finnhub_candle(data: dict) -> dict[str, Any]:
    # arrays are not inspected, only announced
    return {
        "close": ARRAY_FIELD,
        "high": ARRAY_FIELD,
        "low": ARRAY_FIELD,
        "open": ARRAY_FIELD,
        "status": data.get("s"),
        "timestamp": ARRAY_FIELD,
        "volume": ARRAY_FIELD,
    }


# ── Ranked rules ──────────────────────────────────────

def _raise_provider_error(payload: dict) -> dict[str, Any]:
    raise ProviderRateLimitError(error_message(payload))


def _is_finnhub_quote(payload: Any, provider: str) -> bool:
    return (
        provider == FINNHUB
        and isinstance(payload, dict)
        and "c" in payload
        and "d" in payload
        and not isinstance(payload["c"], list)
    )


def _is_finnhub_profile(payload: Any, provider: str) -> bool:
    return provider == FINNHUB and isinstance(payload, dict) and bool(payload.get("name") or payload.get("ticker"))


def _is_finnhub_candle(payload: Any, provider: str) -> bool:
    return provider == FINNHUB and isinstance(payload, dict) and isinstance(payload.get("c"), list)


@dataclass(frozen=True)
class ShapeRule:
    kind: ShapeKind
    detect: Callable[[Any, str], bool]
    extract: Callable[[Any], dict[str, Any]]


SHAPE_RULES: tuple[ShapeRule, ...] = (
    ShapeRule(ShapeKind.ERROR, lambda p, _: error_message(p) is not None, _raise_provider_error),
    ShapeRule(ShapeKind.TIME_SERIES, lambda p, _: find_time_series_key(p) is not None, extract_time_series_fields),
    ShapeRule(ShapeKind.FINNHUB_QUOTE, _is_finnhub_quote, parse_finnhub_quote),
    ShapeRule(ShapeKind.FINNHUB_PROFILE, _is_finnhub_profile, parse_finnhub_profile),
    ShapeRule(ShapeKind.FINNHUB_CANDLE, _is_finnhub_candle, summarize_finnhub_candle),
)


def normalize(payload: Any, provider: str = UNKNOWN) -> tuple[ShapeKind, dict[str, Any]]:
    """
    Apply the first matching shape rule, falling back to ``flatten``.

    Raises:
        ProviderRateLimitError: payload carries an error / notice marker.
    """
    for rule in SHAPE_RULES:
        if not rule.detect(payload, provider):
            continue
        fields = rule.extract(payload)
        if fields:
            return rule.kind, fields
        logger.debug(f"Shape {rule.kind.value} matched but extracted nothing, falling through")
    return ShapeKind.GENERIC, flatten(payload)


_DISCOVERY_MESSAGES = {
    ShapeKind.TIME_SERIES: "Time Series API detected! {n} fields available (open, close, high, low, etc.).",
    ShapeKind.FINNHUB_QUOTE: "Finnhub Quote API detected! {n} fields available.",
    ShapeKind.FINNHUB_PROFILE: "Finnhub Profile API detected! {n} fields available.",
    ShapeKind.FINNHUB_CANDLE: "Finnhub Candle API detected! {n} fields available.",
}


def discover_fields(payload: Any, provider: str = UNKNOWN) -> FieldDiscovery:
    """Fields a user can pick from for a sample response."""
    try:
        kind, fields = normalize(payload, provider)
    except ProviderRateLimitError as e:
        label = "Alpha Vantage" if provider in (ALPHAVANTAGE, UNKNOWN) else provider.capitalize()
        if isinstance(payload, dict) and payload.get("Error Message"):
            label = f"{label} Error"
        raise ProviderRateLimitError(f"{label}: {e.message}", provider) from e

    if kind in _DISCOVERY_MESSAGES:
        message = _DISCOVERY_MESSAGES[kind].format(n=len(fields))
    elif provider == FINNHUB:
        message = f"Finnhub API connected! {len(fields)} fields found."
    else:
        message = f"API connection successful! {len(fields)} fields found."
    return FieldDiscovery(shape=kind.value, provider=provider, fields=fields, message=message)


# ── Consumer shaping ──────────────────────────────────

def default_fields(flat: dict[str, Any], selected: list[str], limit: int) -> list[str]:
    """Selected fields in order, or the first ``limit`` discovered ones."""
    return list(selected) if selected else list(flat)[:limit]


def card_values(
    fields: dict[str, Any],
    selected: list[str],
    limit: int = 4,
    payload: Any = None,
) -> list[dict[str, Any]]:
    """
    Label/value pairs for a card; labels are the last path segment.
    Selected paths missing from ``fields`` are looked up in the raw ``payload``.
    """
    flat = flatten(fields)
    return [
        {
            "field": f,
            "label": f.split(".")[-1],
            "value": flat[f] if f in flat else get_value_by_path(payload, f),
        }
        for f in default_fields(flat, selected, limit)
    ]


def table_rows(payload: Any) -> list[dict[str, Any]]:
    """Flat rows for a table widget."""
    if payload is None:
        return []

    rows: list[Any]
    ts_key = find_time_series_key(payload)
    if isinstance(payload, dict) and isinstance(payload.get("top_gainers"), list):
        rows = payload["top_gainers"]
    elif isinstance(payload, dict) and isinstance(payload.get("top_losers"), list):
        rows = payload["top_losers"]
    elif ts_key is not None:
        rows = [
            {"date": date, **(values if isinstance(values, dict) else {"value": values})}
            for date, values in payload[ts_key].items()
        ]
    elif isinstance(payload, list):
        rows = payload
    else:
        array_prop = next((v for v in payload.values() if isinstance(v, list)), None) if isinstance(payload, dict) else None
        if array_prop is not None:
            rows = array_prop
        elif isinstance(payload, dict) and any(_DATE_KEY.match(k) for k in payload):
            rows = [
                {"date": date, **(values if isinstance(values, dict) else {"value": values})}
                for date, values in payload.items()
            ]
        else:
            rows = [payload]

    return [flatten(row) if isinstance(row, dict) else {"value": row} for row in rows]


def table_columns(rows: list[dict[str, Any]], selected: list[str], limit: int = 6) -> list[str]:
    if not rows:
        return []
    return default_fields(rows[0], selected, limit)


def _to_float(value: Any) -> float:
    try:
        return float(str(value))
    except (TypeError, ValueError):
        return 0.0


def _to_int(value: Any) -> int:
    try:
        return int(float(str(value)))
    except (TypeError, ValueError):
        return 0


def _point(date: str, values: dict) -> dict[str, Any]:
    return {
        "date": date,
        "open": _to_float(_first_present(values, ("1. open", "open"))),
        "high": _to_float(_first_present(values, ("2. high", "high"))),
        "low": _to_float(_first_present(values, ("3. low", "low"))),
        "close": _to_float(_first_present(values, ("4. close", "5. adjusted close", "close", "price", "value"))),
        "volume": _to_int(_first_present(values, ("5. volume", "6. volume", "volume"))),
    }


def chart_points(payload: Any) -> list[dict[str, Any]]:
    """OHLCV points for a chart widget, oldest first for dated series."""
    if payload is None:
        return []

    ts_key = find_time_series_key(payload)
    if ts_key is not None:
        points = [_point(date, values) for date, values in payload[ts_key].items() if isinstance(values, dict)]
        return list(reversed(points))

    if isinstance(payload, list):
        return [
            _point(str(item.get("date") or item.get("time") or f"Point {idx + 1}"), item)
            for idx, item in enumerate(payload)
            if isinstance(item, dict)
        ]

    if isinstance(payload, dict) and any(_DATE_KEY.match(k) for k in payload):
        points = [
            _point(date, values) if isinstance(values, dict) else {"date": date, "close": _to_float(values)}
            for date, values in payload.items()
        ]
        return list(reversed(points))

    return []


def chart_fields(points: list[dict[str, Any]], selected: list[str]) -> list[str]:
    """Series to draw: the selection, or every OHLC series with data."""
    if selected:
        return list(selected)
    return [name for name in ("open", "high", "low", "close") if any(p.get(name) for p in points)]


def watchlist_quote(payload: Any, symbol: str) -> dict[str, Any]:
    """
    Summary of a ``Global Quote`` response for one watchlist symbol.

    Raises:
        ProviderRateLimitError: the provider answered with a notice.
        NormalizationError: no quote in the payload.
    """
    quote = payload.get("Global Quote") if isinstance(payload, dict) else None
    if quote:
        return {
            "symbol": quote.get("01. symbol") or symbol,
            "price": _to_float(quote.get("05. price")),
            "change": _to_float(quote.get("09. change")),
            "change_percent": quote.get("10. change percent", "0%"),
        }
    if isinstance(payload, dict) and (payload.get("Note") or payload.get("Information")):
        raise ProviderRateLimitError("Limit Reached", ALPHAVANTAGE)
    raise NormalizationError("No Data")
