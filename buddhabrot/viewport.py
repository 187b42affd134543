from __future__ import annotations

import math
from dataclasses import dataclass, replace
from typing import Optional, Tuple

from buddhabrot.errors import InvalidParameters
from buddhabrot.params import RenderParameters

# The visible span along each axis is SPAN / zoom complex units.
SPAN = 4.0


@dataclass(frozen=True)
class Viewport:
    """
    Maps between the complex plane and pixel coordinates.

    The visible rectangle is `center +- 2/zoom` on both axes, stretched over
    `width` and `height` pixels respectively:

        screen = (complex - center) * zoom / 4 * resolution + resolution / 2

    `to_screen` floors that value to a pixel index. `to_complex` inverts the
    continuous map, so `to_complex(x + 0.5, y + 0.5)` is the centre of pixel
    (x, y).
    """

    width: int
    height: int
    zoom: float = 1.0
    center_x: float = -0.7
    center_y: float = 0.0

    def __post_init__(self):
        if self.width <= 0 or self.height <= 0:
            raise InvalidParameters(f"Viewport resolution must be positive, got {self.width}x{self.height}")
        if not self.zoom > 0 or not math.isfinite(self.zoom):
            raise InvalidParameters(f"Viewport zoom must be > 0, got {self.zoom!r}")

    @classmethod
    def from_parameters(cls, params: RenderParameters, width: int, height: int) -> "Viewport":
        return cls(width=int(width), height=int(height), zoom=float(params.zoom),
                   center_x=float(params.center_x), center_y=float(params.center_y))

    def to_screen(self, c: complex) -> Tuple[int, int]:
        x = math.floor((c.real - self.center_x) * self.zoom / SPAN * self.width + self.width / 2)
        y = math.floor((c.imag - self.center_y) * self.zoom / SPAN * self.height + self.height / 2)
        return x, y

    def to_complex(self, screen_x: float, screen_y: float) -> complex:
        re = (screen_x - self.width / 2) * SPAN / (self.zoom * self.width) + self.center_x
        im = (screen_y - self.height / 2) * SPAN / (self.zoom * self.height) + self.center_y
        return complex(re, im)

    def contains(self, x: int, y: int) -> bool:
        return 0 <= x < self.width and 0 <= y < self.height

    def project(self, c: complex) -> Optional[Tuple[int, int]]:
        """Pixel for `c`, or None when it falls outside the image (never clamped)."""
        x, y = self.to_screen(c)
        if not self.contains(x, y):
            return None
        return x, y

    def bounds(self) -> Tuple[float, float, float, float]:
        """(re_min, re_max, im_min, im_max) of the visible rectangle."""
        half = SPAN / self.zoom / 2
        return (self.center_x - half, self.center_x + half, self.center_y - half, self.center_y + half)

    def pixel_size(self) -> Tuple[float, float]:
        return SPAN / (self.zoom * self.width), SPAN / (self.zoom * self.height)

    def scaled(self, factor: int) -> "Viewport":
        """Same view of the plane at `factor` times the resolution."""
        if int(factor) != factor or factor < 1:
            raise InvalidParameters(f"scale factor must be a positive integer, got {factor!r}")
        return replace(self, width=self.width * int(factor), height=self.height * int(factor))

    def zoomed(self, factor: float) -> "Viewport":
        if not factor > 0 or not math.isfinite(factor):
            raise InvalidParameters(f"zoom factor must be > 0, got {factor!r}")
        return replace(self, zoom=self.zoom * factor)

    def centered_on(self, screen_x: float, screen_y: float) -> "Viewport":
        c = self.to_complex(screen_x, screen_y)
        return replace(self, center_x=c.real, center_y=c.imag)
