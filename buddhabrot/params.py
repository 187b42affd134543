from __future__ import annotations

import math
from dataclasses import dataclass, fields, replace, asdict
from enum import Enum
from typing import Any, Dict, List, Mapping

from buddhabrot.errors import InvalidParameters


class ColorScheme(str, Enum):
    CLASSIC = "classic"
    MONOCHROME = "monochrome"
    SPECTRAL = "spectral"
    FIRE = "fire"
    OCEAN = "ocean"

    @classmethod
    def parse(cls, value: Any) -> "ColorScheme":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).lower())
        except ValueError:
            choices = ", ".join(s.value for s in cls)
            raise InvalidParameters(f"Unknown color scheme {value!r} (expected one of: {choices})") from None


# Host-facing names used by the original web UI.
_ALIASES = {
    "centerX": "center_x",
    "centerY": "center_y",
    "colorScheme": "color_scheme",
}


@dataclass(frozen=True)
class RenderParameters:
    """Everything a single render depends on. A running job never sees these change."""

    iterations: int = 5000
    samples: int = 10_000_000
    zoom: float = 1.0
    center_x: float = -0.7
    center_y: float = 0.0
    color_scheme: ColorScheme = ColorScheme.CLASSIC

    def validate(self) -> "RenderParameters":
        if isinstance(self.iterations, bool) or not isinstance(self.iterations, int) or self.iterations <= 0:
            raise InvalidParameters(f"iterations must be a positive integer, got {self.iterations!r}")
        if isinstance(self.samples, bool) or not isinstance(self.samples, int) or self.samples <= 0:
            raise InvalidParameters(f"samples must be a positive integer, got {self.samples!r}")
        if not _finite(self.zoom) or self.zoom <= 0:
            raise InvalidParameters(f"zoom must be a finite number > 0, got {self.zoom!r}")
        if not _finite(self.center_x) or not _finite(self.center_y):
            raise InvalidParameters(f"center must be finite, got ({self.center_x!r}, {self.center_y!r})")
        if not isinstance(self.color_scheme, ColorScheme):
            raise InvalidParameters(f"color_scheme must be a ColorScheme, got {self.color_scheme!r}")
        return self

    def merged(self, changes: Mapping[str, Any]) -> "RenderParameters":
        """Return a validated copy with `changes` applied (same rules as from_dict)."""
        return replace(self, **_coerce(changes)).validate()

    def to_dict(self) -> Dict[str, Any]:
        out = asdict(self)
        out["color_scheme"] = self.color_scheme.value
        return out

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "RenderParameters":
        return cls(**_coerce(data)).validate()


def _finite(value: Any) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return math.isfinite(value)


def _coerce(data: Mapping[str, Any]) -> Dict[str, Any]:
    if not isinstance(data, Mapping):
        raise InvalidParameters("Render parameters must be a mapping.")
    known = {f.name for f in fields(RenderParameters)}
    out: Dict[str, Any] = {}
    for key, value in data.items():
        name = _ALIASES.get(key, key)
        if name not in known:
            raise InvalidParameters(f"Unknown render parameter: {key}")
        out[name] = value

    for name in ("iterations", "samples"):
        if name in out:
            value = out[name]
            # JSON configs write large counts like 1e7.
            if isinstance(value, float) and value.is_integer():
                out[name] = int(value)
    for name in ("zoom", "center_x", "center_y"):
        if name in out and isinstance(out[name], int) and not isinstance(out[name], bool):
            out[name] = float(out[name])
    if "color_scheme" in out:
        out["color_scheme"] = ColorScheme.parse(out["color_scheme"])
    return out


@dataclass(frozen=True)
class Preset:
    name: str
    parameters: RenderParameters


_PRESETS: Dict[str, RenderParameters] = {
    "default": RenderParameters(),
    "detailed": RenderParameters(iterations=8000, samples=50_000_000, color_scheme=ColorScheme.SPECTRAL),
    "quick": RenderParameters(iterations=1000, samples=1_000_000, color_scheme=ColorScheme.MONOCHROME),
    "artistic": RenderParameters(
        iterations=6000, samples=25_000_000, zoom=1.5, center_x=-0.8, center_y=0.2, color_scheme=ColorScheme.FIRE
    ),
}


def get_presets() -> List[Preset]:
    return [Preset(name, params) for name, params in _PRESETS.items()]


def get_preset(name: str) -> Preset:
    try:
        return Preset(name, _PRESETS[name])
    except KeyError:
        raise InvalidParameters(f"Unknown preset {name!r} (expected one of: {', '.join(_PRESETS)})") from None
