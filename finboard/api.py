"""
FastAPI routes: expose the widget store, widget data and field discovery to
rendering clients.
"""

import logging
from typing import Any, List, Optional

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel

from finboard.errors import DuplicateWidgetError, FinboardError, UnknownProviderError
from finboard.fetch_cache import FetchCache
from finboard.models import (
    ApiKeys,
    FieldDiscovery,
    FieldDiscoveryRequest,
    Widget,
    WidgetConfig,
    WidgetLayout,
    WidgetUpdate,
)
from finboard.providers import detect_api_provider, get_api_key_param_name
from finboard.widget_data import WidgetDataService
from finboard.widget_state import WidgetDataState
from finboard.widget_store import DEMO_WIDGETS, WidgetStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api")

# Injected by main.create_app
_store: Optional[WidgetStore] = None
_data_service: Optional[WidgetDataService] = None
_cache: Optional[FetchCache] = None


def init_api(store: WidgetStore, data_service: WidgetDataService, cache: FetchCache):
    """Inject shared components (called from main.py)."""
    global _store, _data_service, _cache
    _store = store
    _data_service = data_service
    _cache = cache


def _get_widget(widget_id: str) -> Widget:
    widget = _store.get(widget_id)
    if widget is None:
        raise HTTPException(404, f"Widget '{widget_id}' not found")
    return widget


# ── Widgets ───────────────────────────────────────────

@router.get("/widgets")
async def list_widgets() -> List[Widget]:
    return _store.list()


@router.post("/widgets", status_code=201)
async def create_widget(config: WidgetConfig) -> Widget:
    """Create a widget; its layout is placed automatically."""
    try:
        return _store.create(config)
    except DuplicateWidgetError as e:
        raise HTTPException(409, str(e))


@router.get("/widgets/{widget_id}")
async def get_widget(widget_id: str) -> Widget:
    return _get_widget(widget_id)


@router.patch("/widgets/{widget_id}")
async def update_widget(widget_id: str, changes: WidgetUpdate) -> Widget:
    updated = _store.update(widget_id, changes)
    if updated is None:
        raise HTTPException(404, f"Widget '{widget_id}' not found")
    return updated


@router.delete("/widgets/{widget_id}")
async def delete_widget(widget_id: str) -> dict:
    if _store.remove(widget_id):
        return {"message": f"Widget {widget_id} deleted"}
    raise HTTPException(404, f"Widget '{widget_id}' not found")


@router.put("/layout")
async def update_layout(layouts: List[WidgetLayout]) -> dict:
    """Bulk layout update after a drag/resize; unknown ids are ignored."""
    applied = _store.apply_layout(layouts)
    return {"applied": applied, "total": len(layouts)}


@router.post("/widgets/demo/{kind}", status_code=201)
async def add_demo_widget(kind: str) -> Widget:
    if kind not in DEMO_WIDGETS:
        raise HTTPException(404, f"Unknown demo widget '{kind}', expected one of {sorted(DEMO_WIDGETS)}")
    return _store.add_demo_widget(kind)


class SymbolBody(BaseModel):
    symbol: str


@router.post("/widgets/{widget_id}/symbols")
async def add_watchlist_symbol(widget_id: str, body: SymbolBody) -> Widget:
    _get_widget(widget_id)
    return _store.add_watchlist_symbol(widget_id, body.symbol)


@router.delete("/widgets/{widget_id}/symbols/{symbol}")
async def remove_watchlist_symbol(widget_id: str, symbol: str) -> Widget:
    _get_widget(widget_id)
    return _store.remove_watchlist_symbol(widget_id, symbol)


# ── Widget data ───────────────────────────────────────

@router.get("/widgets/{widget_id}/data")
async def get_widget_data(widget_id: str) -> WidgetDataState:
    """Latest consumer state; fetched on first access."""
    _get_widget(widget_id)
    state = _data_service.get_state(widget_id)
    if state.updated_at == 0 and state.error is None and not state.loading:
        state = await _data_service.refresh(widget_id)
    return state


@router.post("/widgets/{widget_id}/refresh")
async def refresh_widget(widget_id: str) -> WidgetDataState:
    """Manual refresh, bypassing the cache."""
    _get_widget(widget_id)
    return await _data_service.refetch(widget_id)


# ── Field discovery ───────────────────────────────────

@router.post("/fields/discover")
async def discover_fields(request: FieldDiscoveryRequest) -> FieldDiscovery:
    """Test a connection and list the selectable fields of its response."""
    try:
        return await _data_service.discover(request)
    except FinboardError as e:
        logger.warning(f"Field discovery failed for {request.api_endpoint}: {e}")
        raise HTTPException(400, str(e))


@router.get("/providers/detect")
async def detect_provider(url: str) -> dict[str, Any]:
    provider = detect_api_provider(url)
    return {"provider": provider, "api_key_param_name": get_api_key_param_name(provider)}


# ── API keys ──────────────────────────────────────────

@router.get("/api-keys")
async def get_api_keys() -> ApiKeys:
    return _store.api_keys


class ApiKeyBody(BaseModel):
    key: str


@router.put("/api-keys/{provider}")
async def set_api_key(provider: str, body: ApiKeyBody) -> ApiKeys:
    try:
        _store.set_api_key(provider, body.key)
    except UnknownProviderError as e:
        raise HTTPException(400, str(e))
    return _store.api_keys


# ── Cache ─────────────────────────────────────────────

@router.post("/cache/invalidate")
async def invalidate_cache(url: Optional[str] = None) -> dict:
    removed = _cache.invalidate(url)
    return {"removed": removed}
