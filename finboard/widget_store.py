"""
Widget configuration store: the single source of truth for widget identity,
layout and settings.

All operations are synchronous over the in-memory collection; every
mutation is written through to storage and announced to listeners.
"""

import logging
import uuid
from typing import Callable, Iterable, List, Optional

from finboard.errors import DuplicateWidgetError, UnknownProviderError
from finboard.layout import FUNDAMENTALS_VARIANT, default_size, find_next_position
from finboard.models import (
    ApiKeyLocation,
    ApiKeys,
    DashboardRecord,
    Widget,
    WidgetConfig,
    WidgetLayout,
    WidgetType,
    WidgetUpdate,
)
from finboard.providers import KNOWN_PROVIDERS
from finboard.storage import DashboardStorage

logger = logging.getLogger(__name__)

# Fields whose change invalidates a widget's polling schedule
POLLING_FIELDS = frozenset({
    "api_endpoint",
    "refresh_interval",
    "api_key",
    "api_key_location",
    "api_key_param_name",
    "api_key_header_name",
    "watchlist_symbols",
})

# Fields a partial update may explicitly clear
NULLABLE_FIELDS = frozenset({"symbol", "watchlist_symbols", "variant", "api_key"})

# listener(event, widget_id, widget, changed_fields)
StoreListener = Callable[[str, str, Optional[Widget], frozenset], None]


class WidgetStore:
    """In-memory widget collection with optional write-through storage."""

    def __init__(self, storage: DashboardStorage | None = None):
        self._storage = storage
        record = storage.load() if storage else DashboardRecord()
        self._widgets: List[Widget] = record.widgets
        self._api_keys: ApiKeys = record.api_keys
        self._listeners: list[StoreListener] = []
        logger.info(f"Widget store loaded with {len(self._widgets)} widgets")

    # ── Listeners ─────────────────────────────────────

    def subscribe(self, listener: StoreListener):
        self._listeners.append(listener)

    def _notify(self, event: str, widget_id: str, widget: Widget | None, changed: Iterable[str] = ()):
        changed = frozenset(changed)
        for listener in self._listeners:
            try:
                listener(event, widget_id, widget, changed)
            except Exception as e:
                logger.error(f"[{widget_id}] Store listener failed on '{event}': {e}")

    def _persist(self):
        if self._storage is not None:
            self._storage.save(self.snapshot())

    # ── Queries ───────────────────────────────────────

    def list(self) -> List[Widget]:
        return list(self._widgets)

    def get(self, widget_id: str) -> Optional[Widget]:
        for w in self._widgets:
            if w.id == widget_id:
                return w
        return None

    def snapshot(self) -> DashboardRecord:
        return DashboardRecord(widgets=list(self._widgets), api_keys=self._api_keys)

    @property
    def api_keys(self) -> ApiKeys:
        return self._api_keys

    # ── Widgets ───────────────────────────────────────

    def create(self, config: WidgetConfig) -> Widget:
        """
        Add a widget, placing it at the first free grid position.

        Raises:
            DuplicateWidgetError: ``config.id`` is already in the store.
        """
        widget_id = config.id or uuid.uuid4().hex
        if self.get(widget_id) is not None:
            raise DuplicateWidgetError(widget_id)

        w, h = default_size(config.type, config.variant)
        x, y = find_next_position(w, h, [existing.layout for existing in self._widgets])

        data = config.model_dump()
        data["id"] = widget_id
        widget = Widget(**data, layout=WidgetLayout(id=widget_id, x=x, y=y, w=w, h=h))
        self._widgets.append(widget)
        self._persist()
        logger.info(f"[{widget_id}] Widget created at ({x},{y}) size {w}x{h}")
        self._notify("created", widget_id, widget, POLLING_FIELDS)
        return widget

    def update(self, widget_id: str, changes: WidgetUpdate) -> Optional[Widget]:
        """Merge ``changes`` into a widget; unknown ids are ignored."""
        for i, w in enumerate(self._widgets):
            if w.id != widget_id:
                continue
            patch = {
                k: v for k, v in changes.model_dump(exclude_unset=True).items()
                if v is not None or k in NULLABLE_FIELDS
            }
            if patch.get("layout") is not None:
                patch["layout"]["id"] = widget_id
            updated = Widget.model_validate({**w.model_dump(), **patch})
            self._widgets[i] = updated
            self._persist()
            changed = {k for k in patch if getattr(w, k) != getattr(updated, k)}
            logger.info(f"[{widget_id}] Widget updated: {sorted(changed)}")
            self._notify("updated", widget_id, updated, changed)
            return updated

        logger.debug(f"[{widget_id}] Update ignored, widget not found")
        return None

    def remove(self, widget_id: str) -> bool:
        original_len = len(self._widgets)
        self._widgets = [w for w in self._widgets if w.id != widget_id]
        if len(self._widgets) == original_len:
            return False
        self._persist()
        logger.info(f"[{widget_id}] Widget removed")
        self._notify("removed", widget_id, None, POLLING_FIELDS)
        return True

    def apply_layout(self, layouts: Iterable[WidgetLayout]) -> int:
        """Overwrite layouts of matching widgets after a drag/resize."""
        by_id = {lay.id: lay for lay in layouts}
        applied = 0
        for i, w in enumerate(self._widgets):
            new_layout = by_id.get(w.id)
            if new_layout is None:
                continue
            self._widgets[i] = w.model_copy(update={"layout": new_layout.model_copy()})
            applied += 1
        if applied:
            self._persist()
        return applied

    # ── Watchlist ─────────────────────────────────────

    def add_watchlist_symbol(self, widget_id: str, symbol: str) -> Optional[Widget]:
        widget = self.get(widget_id)
        if widget is None:
            return None
        symbols = list(widget.watchlist_symbols or [])
        symbol = symbol.strip().upper()
        if not symbol or symbol in symbols:
            return widget
        return self.update(widget_id, WidgetUpdate(watchlist_symbols=symbols + [symbol]))

    def remove_watchlist_symbol(self, widget_id: str, symbol: str) -> Optional[Widget]:
        widget = self.get(widget_id)
        if widget is None:
            return None
        symbols = [s for s in (widget.watchlist_symbols or []) if s != symbol.upper()]
        return self.update(widget_id, WidgetUpdate(watchlist_symbols=symbols))

    # ── API keys ──────────────────────────────────────

    def set_api_key(self, provider: str, key: str):
        if provider not in KNOWN_PROVIDERS:
            raise UnknownProviderError(provider)
        self._api_keys = self._api_keys.model_copy(update={provider: key})
        self._persist()
        logger.info(f"API key for {provider} updated")

    def seed_api_keys(self, keys: dict[str, str]):
        """Fill in provider keys that are not configured yet."""
        for provider, key in keys.items():
            if provider in KNOWN_PROVIDERS and key and not getattr(self._api_keys, provider):
                self.set_api_key(provider, key)

    # ── Demo presets ──────────────────────────────────

    def add_demo_widget(self, kind: str) -> Widget:
        preset = DEMO_WIDGETS.get(kind)
        if preset is None:
            raise ValueError(f"Unknown demo widget: {kind}")
        config = WidgetConfig(id=f"demo-{kind}-{uuid.uuid4().hex[:8]}", **preset)
        return self.create(config)


_DEMO_KEY = {"api_key": "demo", "api_key_location": ApiKeyLocation.QUERY, "api_key_param_name": "apikey"}

DEMO_WIDGETS = {
    "gainers": {
        "type": WidgetType.TABLE,
        "title": "Top Gainers",
        "api_endpoint": "https://www.alphavantage.co/query?function=TOP_GAINERS_LOSERS",
        "refresh_interval": 300,
        **_DEMO_KEY,
    },
    "fundamentals": {
        "type": WidgetType.CARD,
        "variant": FUNDAMENTALS_VARIANT,
        "title": "IBM Fundamentals",
        "api_endpoint": "https://www.alphavantage.co/query?function=OVERVIEW&symbol=IBM",
        "refresh_interval": 86400,
        "selected_fields": ["52WeekHigh", "52WeekLow", "PERatio", "DividendYield"],
        **_DEMO_KEY,
    },
    "watchlist": {
        "type": WidgetType.TABLE,
        "title": "My Watchlist",
        "api_endpoint": "",
        "refresh_interval": 60,
        "watchlist_symbols": ["IBM", "AAPL", "NVDA", "MSFT"],
        **_DEMO_KEY,
    },
    "chart": {
        "type": WidgetType.CHART,
        "title": "IBM Time Series",
        "api_endpoint": "https://www.alphavantage.co/query?function=TIME_SERIES_DAILY&symbol=IBM",
        "refresh_interval": 60,
        "selected_fields": ["close", "open", "high", "low"],
        **_DEMO_KEY,
    },
}
