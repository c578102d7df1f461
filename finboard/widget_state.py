"""
Runtime state of a widget's data, as seen by rendering clients.
"""

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel


class WidgetStatus(str, Enum):
    IDLE = "idle"                  # never fetched
    LOADING = "loading"
    ACTIVE = "active"              # last refresh succeeded
    ERROR = "error"                # last refresh failed, data may be stale
    UNCONFIGURED = "unconfigured"  # empty endpoint


class WidgetDataState(BaseModel):
    """
    ``data`` is the most recent successfully normalized payload. It is kept
    across failed refreshes; ``error`` only describes the latest attempt.
    """
    widget_id: str
    status: WidgetStatus = WidgetStatus.IDLE
    data: Optional[Any] = None
    loading: bool = False
    error: Optional[str] = None
    updated_at: float = 0.0
