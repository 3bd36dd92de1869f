"""Limits applied to window geometry and opacity before they are stored."""

from dataclasses import replace

from mded.models import WindowBounds

MIN_WINDOW_WIDTH = 300
MIN_WINDOW_HEIGHT = 200
MIN_OPACITY = 0.3
MAX_OPACITY = 1.0


def clamp_opacity(opacity: float) -> float:
    """Returns the opacity limited to [``MIN_OPACITY``, ``MAX_OPACITY``]."""
    return min(max(opacity, MIN_OPACITY), MAX_OPACITY)


def clamp_bounds(bounds: WindowBounds) -> WindowBounds:
    """Returns a copy with width and height raised to the minimum window size. Position is unchanged."""
    return replace(bounds,
                   width=max(bounds.width, MIN_WINDOW_WIDTH),
                   height=max(bounds.height, MIN_WINDOW_HEIGHT))
