"""Percentage-based field geometry.

Field boxes are stored as percentages of the page's width and height with the
vertical position measured from the top of the page. The editor preview turns
them into pixels of the rendered page image; the bake step turns them into PDF
points, where the vertical axis runs bottom-up. Both conversions must agree or
a signature lands somewhere other than where the sender put it.
"""
import math
from dataclasses import dataclass

MIN_SIZE_PERCENT = 1.0


@dataclass(frozen=True)
class Box:
    """An absolute rectangle. ``y`` is the lower edge in PDF space, the upper
    edge in preview (pixel) space."""
    x: float
    y: float
    width: float
    height: float


def percent_of(percent: float, dimension: float) -> float:
    return percent / 100.0 * dimension


def to_pixels(position_x, position_y, width, height, rendered_width, rendered_height) -> Box:
    """Preview placement over a page image rendered at any resolution."""
    return Box(
        x=percent_of(position_x, rendered_width),
        y=percent_of(position_y, rendered_height),
        width=percent_of(width, rendered_width),
        height=percent_of(height, rendered_height),
    )


def to_pdf_box(position_x, position_y, width, height, page_width, page_height) -> Box:
    """Placement in PDF user space (origin bottom-left, units in points)."""
    box_width = percent_of(width, page_width)
    box_height = percent_of(height, page_height)
    x = percent_of(position_x, page_width)
    y = page_height - percent_of(position_y, page_height) - box_height
    return Box(x=x, y=y, width=box_width, height=box_height)


def from_pdf_box(box: Box, page_width: float, page_height: float):
    """Inverse of :func:`to_pdf_box`; returns ``(x, y, width, height)`` percentages."""
    position_x = box.x / page_width * 100.0
    position_y = (page_height - box.y - box.height) / page_height * 100.0
    return (
        position_x,
        position_y,
        box.width / page_width * 100.0,
        box.height / page_height * 100.0,
    )


def _clamp(value: float, low: float, high: float) -> float:
    return min(max(value, low), high)


def clamp_geometry(position_x, position_y, width, height):
    """Keep a box on the page the way the layout editor does while dragging
    and resizing: size first, then position so that ``x + width <= 100``."""
    width = _clamp(width, MIN_SIZE_PERCENT, 100.0)
    height = _clamp(height, MIN_SIZE_PERCENT, 100.0)
    position_x = _clamp(position_x, 0.0, 100.0 - width)
    position_y = _clamp(position_y, 0.0, 100.0 - height)
    return position_x, position_y, width, height


def is_drawable(position_x, position_y, width, height) -> bool:
    values = (position_x, position_y, width, height)
    if not all(isinstance(v, (int, float)) and math.isfinite(v) for v in values):
        return False
    return width > 0 and height > 0
