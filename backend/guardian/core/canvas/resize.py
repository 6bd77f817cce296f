"""
Canvas Resize Handles
=====================

Pointer-drag resizing of process-flow canvas nodes.

A drag starts on one of four corner handles. Each pointer move computes a
new size from the total delta since the drag began: dragging the east or
south edge grows with the pointer, dragging the north or west edge grows
against it. Sizes are floored at a minimum and updates are throttled to
one per window (16 ms, about 60 per second).
"""

import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

DEFAULT_WIDTH = 180
DEFAULT_HEIGHT = 60
MIN_WIDTH = 80
MIN_HEIGHT = 40
THROTTLE_MS = 16


class Corner(str, Enum):
    """Resize handle positions."""
    NW = "nw"
    NE = "ne"
    SE = "se"
    SW = "sw"

    @property
    def grows_east(self) -> bool:
        return "e" in self.value

    @property
    def grows_south(self) -> bool:
        return "s" in self.value


@dataclass(frozen=True)
class Point:
    x: float
    y: float


@dataclass(frozen=True)
class Size:
    width: float
    height: float


def resized(
    corner: Corner,
    start: Size,
    dx: float,
    dy: float,
    min_width: float = MIN_WIDTH,
    min_height: float = MIN_HEIGHT,
) -> Size:
    """Size after dragging `corner` by (dx, dy) from `start`."""
    width = start.width + (dx if corner.grows_east else -dx)
    height = start.height + (dy if corner.grows_south else -dy)
    return Size(max(min_width, width), max(min_height, height))


def monotonic_ms() -> float:
    return time.monotonic() * 1000


class Throttle:
    """
    Let at most one call through per window.

    A call inside a window is held, replacing any earlier held call. The
    next call after the window runs and drops the held one; flush() runs
    the held call immediately.
    """

    def __init__(
        self,
        fn: Callable[..., Any],
        window_ms: float = THROTTLE_MS,
        clock: Callable[[], float] = monotonic_ms,
    ):
        self._fn = fn
        self.window_ms = window_ms
        self._clock = clock
        self._last_call: Optional[float] = None
        self._pending: Optional[tuple] = None

    def __call__(self, *args: Any) -> bool:
        """Returns True when fn ran for this call."""
        now = self._clock()
        if self._last_call is None or now - self._last_call >= self.window_ms:
            self._pending = None
            self._last_call = now
            self._fn(*args)
            return True
        self._pending = args
        return False

    @property
    def has_pending(self) -> bool:
        return self._pending is not None

    def flush(self) -> bool:
        """Run the held call now, if any."""
        if self._pending is None:
            return False
        args, self._pending = self._pending, None
        self._last_call = self._clock()
        self._fn(*args)
        return True

    def cancel(self) -> None:
        self._pending = None


class ResizeSession:
    """
    One drag of one resize handle, from pointer-down to pointer-up.

    `apply` receives each new Size; nothing is persisted here. Moves after
    end() are ignored.
    """

    def __init__(
        self,
        corner: Corner | str,
        start_pointer: Point,
        start_size: Size,
        apply: Callable[[Size], Any],
        min_width: float = MIN_WIDTH,
        min_height: float = MIN_HEIGHT,
        throttle_ms: float = THROTTLE_MS,
        clock: Callable[[], float] = monotonic_ms,
    ):
        self.corner = Corner(corner)
        self.start_pointer = start_pointer
        self.start_size = start_size
        self.min_width = min_width
        self.min_height = min_height
        self.active = True
        self.last_size: Optional[Size] = None
        self._apply = apply
        self._throttle = Throttle(self._emit, throttle_ms, clock)

    @classmethod
    def begin(
        cls,
        corner: Corner | str,
        pointer: Point,
        node: dict,
        apply: Callable[[Size], Any],
        **kwargs: Any,
    ) -> "ResizeSession":
        """Pointer pressed on a handle of a canvas node dict."""
        return cls(corner, pointer, node_size(node), apply, **kwargs)

    def _emit(self, size: Size) -> None:
        self.last_size = size
        self._apply(size)

    def move(self, x: float, y: float) -> bool:
        """Pointer moved to (x, y). Returns True if an update was applied."""
        if not self.active:
            return False
        size = resized(
            self.corner,
            self.start_size,
            x - self.start_pointer.x,
            y - self.start_pointer.y,
            self.min_width,
            self.min_height,
        )
        return self._throttle(size)

    def end(self) -> Optional[Size]:
        """Pointer released: deliver any held update and detach."""
        if self.active:
            self._throttle.flush()
            self.active = False
        return self.last_size


def node_size(node: dict) -> Size:
    """Current size of a canvas node dict, with canvas defaults."""
    return Size(
        node.get("width") or DEFAULT_WIDTH,
        node.get("height") or DEFAULT_HEIGHT,
    )


def apply_resize(nodes: list[dict], node_id: str, size: Size) -> list[dict]:
    """
    Return a copy of a canvas node list with `node_id` resized. The size is
    mirrored into the node's style and data the way the canvas reads it.
    """
    updated = []
    for node in nodes:
        if node.get("id") != node_id:
            updated.append(node)
            continue
        dims = {"width": size.width, "height": size.height}
        updated.append({
            **node,
            **dims,
            "style": {**(node.get("style") or {}), **dims},
            "data": {**(node.get("data") or {}), **dims},
        })
    return updated


def handle_style(corner: Corner | str) -> dict[str, Any]:
    """Inline style for a corner handle."""
    corner = Corner(corner)
    style: dict[str, Any] = {
        "width": 8,
        "height": 8,
        "background": "#1e90ff",
        "position": "absolute",
        "cursor": "nwse-resize" if corner in (Corner.NW, Corner.SE) else "nesw-resize",
        "zIndex": 10,
        "borderRadius": 2,
    }
    style["bottom" if corner.grows_south else "top"] = -4
    style["right" if corner.grows_east else "left"] = -4
    return style
