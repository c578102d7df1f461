"""
Widget data consumer: resolves a widget's endpoint through the fetch cache,
normalizes the payload for its display mode and keeps the per-widget
``{data, loading, error}`` state.

Every fetch / normalization failure is caught here and turned into a message
on the widget state; nothing propagates into the polling loop.
"""

import asyncio
import logging
import time
from typing import Any, Dict

from finboard.errors import FinboardError, UnconfiguredEndpointError
from finboard.fetch_cache import FetchCache
from finboard.models import FieldDiscovery, FieldDiscoveryRequest, Widget, WidgetType
from finboard.normalizer import (
    card_values,
    chart_fields,
    chart_points,
    discover_fields,
    normalize,
    table_columns,
    table_rows,
    watchlist_quote,
)
from finboard.providers import (
    ALPHAVANTAGE,
    FINNHUB,
    apply_api_key,
    detect_api_provider,
    get_api_key_param_name,
)
from finboard.widget_state import WidgetDataState, WidgetStatus
from finboard.widget_store import WidgetStore

logger = logging.getLogger(__name__)

WATCHLIST_CACHE_MS = 60 * 1000
WATCHLIST_QUOTE_URL = "https://www.alphavantage.co/query?function=GLOBAL_QUOTE&symbol={symbol}&apikey={api_key}"


class WidgetDataService:
    """
    Loads data for widgets held by a ``WidgetStore``.
    Keeps the runtime ``WidgetDataState`` of every widget in memory.
    """

    def __init__(self, store: WidgetStore, cache: FetchCache):
        self._store = store
        self._cache = cache
        # widget_id -> WidgetDataState
        self._states: Dict[str, WidgetDataState] = {}

    def get_state(self, widget_id: str) -> WidgetDataState:
        if widget_id not in self._states:
            self._states[widget_id] = WidgetDataState(widget_id=widget_id)
        return self._states[widget_id]

    def drop_state(self, widget_id: str):
        self._states.pop(widget_id, None)

    # ── Request building ──────────────────────────────

    def build_request(self, widget: Widget) -> tuple[str, dict[str, str]]:
        """Final URL and headers for a widget's endpoint."""
        if not widget.api_endpoint:
            raise UnconfiguredEndpointError(widget.id)
        return apply_api_key(
            widget.api_endpoint,
            widget.api_key,
            widget.api_key_location,
            widget.api_key_param_name,
            widget.api_key_header_name,
        )

    def _stored_key(self, provider: str) -> str:
        keys = self._store.api_keys
        if provider == ALPHAVANTAGE:
            return keys.alphavantage
        if provider == FINNHUB:
            return keys.finnhub
        return ""

    # ── Refresh ───────────────────────────────────────

    async def refresh(self, widget_id: str, force: bool = False) -> WidgetDataState:
        """
        Fetch and normalize one widget. Errors end up in ``state.error``;
        ``state.data`` keeps the previous good value.
        """
        widget = self._store.get(widget_id)
        if widget is None:
            logger.debug(f"[{widget_id}] Refresh skipped, widget no longer exists")
            return WidgetDataState(widget_id=widget_id)

        state = self.get_state(widget_id)
        if not widget.is_watchlist and not widget.api_endpoint:
            state.status = WidgetStatus.UNCONFIGURED
            state.error = str(UnconfiguredEndpointError(widget_id))
            return state

        state.loading = True
        state.status = WidgetStatus.LOADING
        try:
            if widget.is_watchlist:
                data = await self._load_watchlist(widget, force)
            else:
                data = await self._load(widget, force)
        except FinboardError as e:
            logger.error(f"[{widget_id}] Refresh failed: {e}")
            state.status = WidgetStatus.ERROR
            state.error = str(e)
        else:
            state.data = data
            state.error = None
            state.status = WidgetStatus.ACTIVE
            state.updated_at = time.time()
        finally:
            state.loading = False
        return state

    async def refetch(self, widget_id: str) -> WidgetDataState:
        """Manual refresh: bypasses the cache for this single call."""
        return await self.refresh(widget_id, force=True)

    async def _load(self, widget: Widget, force: bool) -> dict[str, Any]:
        url, headers = self.build_request(widget)
        payload = await self._cache.get(
            url,
            duration_ms=widget.refresh_interval * 1000,
            force_refresh=force,
            headers=headers,
        )
        return shape_for_widget(widget, payload)

    async def _load_watchlist(self, widget: Widget, force: bool) -> dict[str, Any]:
        api_key = self._store.api_keys.alphavantage or widget.api_key or "demo"
        quotes = await asyncio.gather(
            *(self._fetch_quote(symbol, api_key, force) for symbol in widget.watchlist_symbols or [])
        )
        return {"type": "WATCHLIST", "quotes": list(quotes)}

    async def _fetch_quote(self, symbol: str, api_key: str, force: bool) -> dict[str, Any]:
        url = WATCHLIST_QUOTE_URL.format(symbol=symbol, api_key=api_key)
        try:
            payload = await self._cache.get(url, duration_ms=WATCHLIST_CACHE_MS, force_refresh=force)
            return {**watchlist_quote(payload, symbol), "error": None}
        except FinboardError as e:
            logger.warning(f"Watchlist quote for {symbol} failed: {e}")
            return {"symbol": symbol, "price": 0.0, "change": 0.0, "change_percent": "0%", "error": str(e)}

    # ── Field discovery ───────────────────────────────

    async def discover(self, request: FieldDiscoveryRequest) -> FieldDiscovery:
        """
        "Test connection": fetch a fresh sample and list its fields.
        Falls back to the stored provider key when none is given.

        Raises:
            FinboardError: fetch or provider error, for the caller to report.
        """
        if not request.api_endpoint:
            raise UnconfiguredEndpointError()
        provider = detect_api_provider(request.api_endpoint)
        api_key = request.api_key or self._stored_key(provider) or None
        param_name = request.api_key_param_name or get_api_key_param_name(provider)

        url, headers = apply_api_key(
            request.api_endpoint,
            api_key,
            request.api_key_location,
            param_name,
            request.api_key_header_name,
        )
        payload = await self._cache.get(url, force_refresh=True, headers=headers)
        discovery = discover_fields(payload, provider)
        logger.info(f"Discovered {len(discovery.fields)} fields ({discovery.shape}) at {request.api_endpoint}")
        return discovery


def shape_for_widget(widget: Widget, payload: Any) -> dict[str, Any]:
    """
    Normalized data for a widget's display mode.

    Raises:
        ProviderRateLimitError: the payload is a provider notice.
    """
    provider = detect_api_provider(widget.api_endpoint)
    kind, fields = normalize(payload, provider)
    data: dict[str, Any] = {"type": widget.type.value, "shape": kind.value, "fields": fields}

    if widget.type == WidgetType.TABLE:
        rows = table_rows(payload)
        data["rows"] = rows
        data["columns"] = table_columns(rows, widget.selected_fields)
    elif widget.type == WidgetType.CHART:
        points = chart_points(payload)
        data["points"] = points
        data["series"] = chart_fields(points, widget.selected_fields)
    else:
        data["values"] = card_values(fields, widget.selected_fields, payload=payload)
    return data
