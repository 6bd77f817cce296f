"""Process-flow canvas interaction handlers."""

from guardian.core.canvas.resize import (
    Corner,
    Point,
    ResizeSession,
    Size,
    Throttle,
    apply_resize,
    handle_style,
    node_size,
    resized,
)

__all__ = [
    "Corner",
    "Point",
    "ResizeSession",
    "Size",
    "Throttle",
    "apply_resize",
    "handle_style",
    "node_size",
    "resized",
]
