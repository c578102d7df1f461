"""
Grid placement: first-fit positioning of new widgets on a 12-column grid.
"""

import logging
from typing import Iterable

from finboard.models import WidgetLayout, WidgetType

logger = logging.getLogger(__name__)

GRID_COLUMNS = 12

FUNDAMENTALS_VARIANT = "fundamentals"


def default_size(widget_type: WidgetType, variant: str | None = None) -> tuple[int, int]:
    """Default (w, h) of a new widget."""
    if widget_type in (WidgetType.TABLE, WidgetType.CHART):
        return 6, 4
    if variant == FUNDAMENTALS_VARIANT:
        return 3, 2
    return 3, 3


def _overlaps(x: int, y: int, w: int, h: int, other: WidgetLayout) -> bool:
    # strict interval overlap, touching edges do not collide
    return (
        x < other.x + other.w
        and x + w > other.x
        and y < other.y + other.h
        and y + h > other.y
    )


def find_next_position(
    w: int,
    h: int,
    existing: Iterable[WidgetLayout],
    cols: int = GRID_COLUMNS,
) -> tuple[int, int]:
    """
    First free (x, y) for a w×h rectangle, scanning rows top to bottom.

    On collision x advances by one; when the rectangle would pass the right
    edge of the grid, x resets to 0 and y advances. The scan is capped at
    ``cols * (max_bottom + 1) + 1`` candidates, after which the widget is
    placed below the lowest existing widget.
    """
    layouts = list(existing)
    max_bottom = max((lay.y + lay.h for lay in layouts), default=0)

    if w > cols:
        # can never fit beside anything; stack it under the others
        return 0, max_bottom

    max_iterations = cols * (max_bottom + 1) + 1
    x = y = 0
    for _ in range(max_iterations):
        if not any(_overlaps(x, y, w, h, lay) for lay in layouts):
            return x, y
        x += 1
        if x + w > cols:
            x = 0
            y += 1

    logger.warning(f"Placement scan exhausted for {w}x{h}, appending at y={max_bottom}")
    return 0, max_bottom
