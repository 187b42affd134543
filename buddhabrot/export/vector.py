from __future__ import annotations

from typing import List, Union

import numpy as np

from buddhabrot.color import map_density, peak_color, to_hex
from buddhabrot.errors import ExportFailure, InvalidParameters
from buddhabrot.params import ColorScheme
from buddhabrot.util.logging_setup import get_logger

DEFAULT_STEP = 5


def export_vector(buffer, scheme: Union[ColorScheme, str], step: int = DEFAULT_STEP) -> bytes:
    """
    Approximate the buffer as SVG: one filled square per non-zero cell of a
    `step`-pixel grid, opacity equal to the cell's normalized density.

    The grid samples the top-left pixel of each cell; this is not a
    pixel-exact rendering.
    """
    if isinstance(step, bool) or int(step) != step or step < 1:
        raise InvalidParameters(f"step must be a positive integer, got {step!r}")
    if buffer is None or buffer.density.size == 0:
        raise ExportFailure("Nothing to export: no accumulated density.")
    scheme = ColorScheme.parse(scheme)
    step = int(step)

    height, width = buffer.density.shape
    max_density = float(buffer.max_density)
    rows: List[str] = [
        '<?xml version="1.0" encoding="UTF-8"?>',
        f'<svg xmlns="http://www.w3.org/2000/svg" width="{width}" height="{height}" viewBox="0 0 {width} {height}">',
        '<rect width="100%" height="100%" fill="black"/>',
    ]

    cells = 0
    if max_density > 0:
        fill = to_hex(peak_color(scheme))
        grid = buffer.density[::step, ::step]
        for gy, gx in zip(*np.nonzero(grid)):
            density = float(grid[gy, gx])
            x = int(gx) * step
            y = int(gy) * step
            if scheme is ColorScheme.SPECTRAL:
                fill = to_hex(map_density(density, max_density, scheme))
            opacity = min(density / max_density, 1.0)
            rows.append(
                f'<rect x="{x}" y="{y}" width="{min(step, width - x)}" height="{min(step, height - y)}" '
                f'fill="{fill}" opacity="{opacity:.4f}"/>'
            )
            cells += 1

    rows.append("</svg>")
    data = ("\n".join(rows) + "\n").encode("utf-8")
    get_logger().info("Vector export %sx%s step=%s cells=%s -> %s bytes", width, height, step, cells, len(data))
    return data
