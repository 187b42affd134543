from __future__ import annotations

import math
from typing import Tuple, Union

import numpy as np

from buddhabrot.params import ColorScheme

RGB = Tuple[int, int, int]

# Per-channel multipliers applied to the gamma-corrected intensity.
SCHEME_MULTIPLIERS = {
    ColorScheme.CLASSIC: (1.0, 0.3, 0.3),
    ColorScheme.MONOCHROME: (1.0, 1.0, 1.0),
    ColorScheme.FIRE: (1.0, 0.5, 0.0),
    ColorScheme.OCEAN: (0.0, 0.7, 1.0),
}

# Spectral hue rotation: one sinusoid per channel, 0/120/240 degrees apart.
SPECTRAL_PHASES = (0.0, 2.0 * math.pi / 3.0, 4.0 * math.pi / 3.0)


def _channel(value: float) -> int:
    return int(min(255.0, max(0.0, value)))


def map_density(density: float, max_density: float, scheme: Union[ColorScheme, str]) -> RGB:
    """
    Color for one pixel.

    Zero density is always black. Otherwise the density is normalised against
    `max_density`; spectral maps that straight onto three phase-shifted
    sinusoids, every other scheme takes sqrt(normalized) * 255 (gamma 0.5) and
    scales it per channel.
    """
    scheme = ColorScheme.parse(scheme)
    if density <= 0 or max_density <= 0:
        return (0, 0, 0)
    normalized = min(float(density) / float(max_density), 1.0)

    if scheme is ColorScheme.SPECTRAL:
        r, g, b = ((math.sin(2.0 * math.pi * normalized + phase) * 0.5 + 0.5) * 255.0 for phase in SPECTRAL_PHASES)
        return (_channel(r), _channel(g), _channel(b))

    intensity = math.sqrt(normalized) * 255.0
    mr, mg, mb = SCHEME_MULTIPLIERS[scheme]
    return (_channel(intensity * mr), _channel(intensity * mg), _channel(intensity * mb))


def colorize(density: np.ndarray, max_density: float, scheme: Union[ColorScheme, str]) -> np.ndarray:
    """map_density over a whole histogram; returns an (H, W, 3) uint8 array."""
    scheme = ColorScheme.parse(scheme)
    density = np.asarray(density)
    out = np.zeros(density.shape + (3,), dtype=np.uint8)
    if max_density <= 0:
        return out

    mask = density > 0
    normalized = np.minimum(density[mask].astype(np.float64) / float(max_density), 1.0)

    if scheme is ColorScheme.SPECTRAL:
        for ch, phase in enumerate(SPECTRAL_PHASES):
            values = (np.sin(2.0 * np.pi * normalized + phase) * 0.5 + 0.5) * 255.0
            out[..., ch][mask] = np.clip(values, 0.0, 255.0).astype(np.uint8)
        return out

    intensity = np.sqrt(normalized) * 255.0
    for ch, multiplier in enumerate(SCHEME_MULTIPLIERS[scheme]):
        out[..., ch][mask] = np.clip(intensity * multiplier, 0.0, 255.0).astype(np.uint8)
    return out


def render_buffer(buffer, scheme: Union[ColorScheme, str]) -> np.ndarray:
    return colorize(buffer.density, buffer.max_density, scheme)


def peak_color(scheme: Union[ColorScheme, str]) -> RGB:
    """Color of a cell at full density."""
    return map_density(1.0, 1.0, scheme)


def to_hex(rgb: RGB) -> str:
    return "#{:02x}{:02x}{:02x}".format(*rgb)
