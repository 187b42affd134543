from __future__ import annotations

import math
from typing import Optional, Tuple

import numpy as np
from numba import njit

from buddhabrot.errors import InvalidParameters
from buddhabrot.viewport import SPAN

# |z|^2 above this means the orbit has escaped.
BAILOUT_SQ = 4.0


@njit(cache=True, nogil=True)
def escape_orbit(cr, ci, max_iter, orbit_re, orbit_im):
    """
    Iterate z <- z*z + c from z = 0, writing z_0, z_1, ... into the orbit arrays.

    Returns the number of recorded points if the orbit escapes before
    `max_iter` steps, or -1 if it stays bounded. The escaping value itself
    is not recorded.
    """
    zr = 0.0
    zi = 0.0
    for n in range(max_iter):
        zr2 = zr * zr
        zi2 = zi * zi
        if zr2 + zi2 > BAILOUT_SQ:
            return n
        orbit_re[n] = zr
        orbit_im[n] = zi
        zi = 2.0 * zr * zi + ci
        zr = zr2 - zi2 + cr
    return -1


@njit(cache=True, nogil=True)
def accumulate_orbits(samples_re, samples_im, max_iter, density, zoom, center_x, center_y, orbit_re, orbit_im):
    """
    Sample every c in the batch and add each escaping orbit to `density`.

    Pixel mapping is the same expression as Viewport.to_screen so both agree
    on boundary pixels. Points outside the image are dropped.
    Returns (escaped_samples, increments).
    """
    height, width = density.shape
    escaped = 0
    increments = 0
    for i in range(samples_re.shape[0]):
        length = escape_orbit(samples_re[i], samples_im[i], max_iter, orbit_re, orbit_im)
        if length < 0:
            continue
        escaped += 1
        for k in range(length):
            x = math.floor((orbit_re[k] - center_x) * zoom / SPAN * width + width / 2)
            y = math.floor((orbit_im[k] - center_y) * zoom / SPAN * height + height / 2)
            if x >= 0 and x < width and y >= 0 and y < height:
                density[y, x] += 1.0
                increments += 1
    return escaped, increments


def orbit_scratch(max_iter: int) -> Tuple[np.ndarray, np.ndarray]:
    return np.empty(max_iter, dtype=np.float64), np.empty(max_iter, dtype=np.float64)


def sample(c: complex, max_iter: int) -> Optional[np.ndarray]:
    """
    Return the trajectory of `c` as a complex128 array (z_0 = 0 first) if it
    escapes within `max_iter` steps, otherwise None.
    """
    if isinstance(max_iter, bool) or int(max_iter) != max_iter or max_iter <= 0:
        raise InvalidParameters(f"max_iter must be a positive integer, got {max_iter!r}")
    c = complex(c)
    orbit_re, orbit_im = orbit_scratch(int(max_iter))
    length = escape_orbit(c.real, c.imag, int(max_iter), orbit_re, orbit_im)
    if length < 0:
        return None
    trajectory = np.empty(length, dtype=np.complex128)
    trajectory.real = orbit_re[:length]
    trajectory.imag = orbit_im[:length]
    return trajectory
