"""Page space <-> viewport space rectangle mapping.

PDF page space has its origin at the bottom-left corner and y grows
upwards. Viewport (screen/canvas) space has its origin at the top-left
corner and y grows downwards, so every mapping flips y against the
viewport height. Annotation rectangles may list their corners in any
order, so every function takes min/max of each axis first.
"""

from typing import Sequence

from .models import ViewportRect


def _corners(rect: Sequence[float]) -> tuple[float, float, float, float]:
    if len(rect) != 4:
        raise ValueError(f"rect must have 4 coordinates, got {len(rect)}")
    x1, y1, x2, y2 = (float(c) for c in rect)
    return x1, y1, x2, y2


def normalize_rect(rect: Sequence[float]) -> list[float]:
    """Return ``[x_min, y_min, x_max, y_max]`` for an unordered rect."""
    x1, y1, x2, y2 = _corners(rect)
    return [min(x1, x2), min(y1, y2), max(x1, x2), max(y1, y2)]


def to_viewport(rect: Sequence[float], viewport_height: float) -> ViewportRect:
    """Map a page-space rect to a viewport-space box.

    Args:
        rect: ``[x1, y1, x2, y2]`` in page space, corners in any order.
        viewport_height: Height of the rendered page in viewport units.

    Returns:
        ViewportRect with a top-left anchor and non-negative size.

    Raises:
        ValueError: If ``rect`` does not have exactly four coordinates.
    """
    x1, y1, x2, y2 = _corners(rect)
    return ViewportRect(
        x=min(x1, x2),
        y=viewport_height - max(y1, y2),
        width=abs(x2 - x1),
        height=abs(y2 - y1),
    )


def to_page(box: ViewportRect, viewport_height: float) -> list[float]:
    """Inverse of :func:`to_viewport`.

    Returns:
        ``[x_min, y_min, x_max, y_max]`` in page space.
    """
    top = viewport_height - box.y
    return [box.x, top - box.height, box.x + box.width, top]


def scale_rect(rect: Sequence[float], scale: float) -> list[float]:
    """Scale a page-space rect to a zoomed page (engine ``scale`` factor)."""
    return [c * scale for c in _corners(rect)]
