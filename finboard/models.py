"""
Data models for widgets and the persisted dashboard record.
"""

from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class WidgetType(str, Enum):
    CARD = "CARD"
    TABLE = "TABLE"
    CHART = "CHART"


class ApiKeyLocation(str, Enum):
    QUERY = "query"
    HEADER = "header"


class WidgetLayout(BaseModel):
    """Grid rectangle of a widget (grid units)."""
    id: str = Field(default="", description="Widget id this layout belongs to")
    x: int = Field(default=0, description="X position in grid columns")
    y: int = Field(default=0, description="Y position in grid rows")
    w: int = Field(default=3, description="Width in grid columns")
    h: int = Field(default=3, description="Height in grid rows")


class WidgetConfig(BaseModel):
    """User-editable settings of a single panel."""
    id: str = Field(default="", description="Assigned by the store when empty")
    type: WidgetType = WidgetType.CARD
    title: str = ""
    api_endpoint: str = Field(default="", description="Empty means unconfigured")
    refresh_interval: int = Field(default=30, gt=0, description="Seconds, also the cache duration")
    selected_fields: List[str] = Field(default_factory=list, description="Dotted paths, display order")
    symbol: Optional[str] = None
    watchlist_symbols: Optional[List[str]] = None
    variant: Optional[str] = Field(default=None, description="e.g. 'fundamentals' for the compact card")

    api_key: Optional[str] = None
    api_key_location: ApiKeyLocation = ApiKeyLocation.QUERY
    api_key_param_name: str = "apikey"
    api_key_header_name: str = "X-API-Key"

    @property
    def is_watchlist(self) -> bool:
        return self.watchlist_symbols is not None


class Widget(WidgetConfig):
    """A configured widget together with its grid placement."""
    layout: WidgetLayout = Field(default_factory=WidgetLayout)


class WidgetUpdate(BaseModel):
    """Partial update for a widget; unset fields are left untouched."""
    type: Optional[WidgetType] = None
    title: Optional[str] = None
    api_endpoint: Optional[str] = None
    refresh_interval: Optional[int] = Field(default=None, gt=0)
    selected_fields: Optional[List[str]] = None
    symbol: Optional[str] = None
    watchlist_symbols: Optional[List[str]] = None
    variant: Optional[str] = None
    api_key: Optional[str] = None
    api_key_location: Optional[ApiKeyLocation] = None
    api_key_param_name: Optional[str] = None
    api_key_header_name: Optional[str] = None
    layout: Optional[WidgetLayout] = None


class ApiKeys(BaseModel):
    """Provider API keys shared by all widgets."""
    alphavantage: str = ""
    finnhub: str = ""


class DashboardRecord(BaseModel):
    """Everything that survives a reload."""
    widgets: List[Widget] = Field(default_factory=list)
    api_keys: ApiKeys = Field(default_factory=ApiKeys)


class FieldDiscoveryRequest(BaseModel):
    """Payload of a 'test connection' call."""
    api_endpoint: str
    api_key: Optional[str] = None
    api_key_location: ApiKeyLocation = ApiKeyLocation.QUERY
    api_key_param_name: Optional[str] = None
    api_key_header_name: str = "X-API-Key"


class FieldDiscovery(BaseModel):
    """Result of field discovery on a sample response."""
    shape: str
    provider: str = "unknown"
    fields: Dict[str, Any] = Field(default_factory=dict)
    message: str = ""
