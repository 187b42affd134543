from __future__ import annotations

from dataclasses import dataclass
from typing import Iterator, Optional

import numpy as np

from buddhabrot.params import RenderParameters
from buddhabrot.renderers.trajectory import accumulate_orbits, orbit_scratch
from buddhabrot.util.logging_setup import get_logger
from buddhabrot.viewport import SPAN, Viewport

DEFAULT_BATCH_SIZE = 10_000


class AccumulationBuffer:
    """
    Per-pixel visit counts for one render, stored as float32 (height x width).

    float32 counters never wrap. They are exact up to 2**24; past that, batch
    sums are added with rounding and a single +1 is lost.
    """

    def __init__(self, width: int, height: int):
        self.density = np.zeros((int(height), int(width)), dtype=np.float32)
        self.max_density = 0.0

    @classmethod
    def for_viewport(cls, viewport: Viewport) -> "AccumulationBuffer":
        return cls(viewport.width, viewport.height)

    @property
    def width(self) -> int:
        return self.density.shape[1]

    @property
    def height(self) -> int:
        return self.density.shape[0]

    @property
    def nbytes(self) -> int:
        return int(self.density.nbytes)

    def total(self) -> float:
        return float(self.density.sum(dtype=np.float64))

    def merge(self, partial: np.ndarray) -> float:
        """Add a batch histogram of the same shape and return the new max density."""
        if partial.shape != self.density.shape:
            raise ValueError(f"Histogram shape {partial.shape} does not match buffer {self.density.shape}")
        np.add(self.density, partial, out=self.density)
        if self.density.size:
            self.max_density = max(self.max_density, float(self.density.max()))
        return self.max_density

    def copy(self) -> "AccumulationBuffer":
        other = AccumulationBuffer(self.width, self.height)
        other.density[...] = self.density
        other.max_density = self.max_density
        return other


@dataclass(frozen=True)
class BatchResult:
    processed: int
    new_max_density: float
    escaped: int = 0
    increments: int = 0


@dataclass
class PartialBatch:
    """A sampled batch that has not been added to any buffer yet."""

    density: np.ndarray
    processed: int
    escaped: int
    increments: int


def draw_samples(viewport: Viewport, count: int, rng: np.random.Generator):
    """Uniform points over the visible rectangle, (u - 0.5) * 4 / zoom + center per axis."""
    span = SPAN / viewport.zoom
    re = (rng.random(count) - 0.5) * span + viewport.center_x
    im = (rng.random(count) - 0.5) * span + viewport.center_y
    return re, im


def compute_batch(params: RenderParameters, viewport: Viewport, count: int, rng: np.random.Generator,
                  scratch=None) -> PartialBatch:
    re, im = draw_samples(viewport, count, rng)
    orbit_re, orbit_im = scratch if scratch is not None else orbit_scratch(params.iterations)
    density = np.zeros((viewport.height, viewport.width), dtype=np.float32)
    escaped, increments = accumulate_orbits(
        re, im, params.iterations, density,
        viewport.zoom, viewport.center_x, viewport.center_y,
        orbit_re, orbit_im,
    )
    return PartialBatch(density=density, processed=count, escaped=int(escaped), increments=int(increments))


def run_batch(buffer: AccumulationBuffer, params: RenderParameters, viewport: Viewport, batch_size: int,
              *, rng: np.random.Generator) -> BatchResult:
    partial = compute_batch(params, viewport, batch_size, rng)
    new_max = buffer.merge(partial.density)
    return BatchResult(processed=partial.processed, new_max_density=new_max,
                       escaped=partial.escaped, increments=partial.increments)


class BatchScheduler:
    """
    Splits `params.samples` into batches of at most `batch_size`.

    Sampling a batch (`next_batch`) and adding it to the buffer (`commit`) are
    separate steps so an owner can decide, between the two, whether the batch
    still belongs to the current render. `run` does both and yields after
    every batch.
    """

    def __init__(self, params: RenderParameters, viewport: Viewport, *, batch_size: int = DEFAULT_BATCH_SIZE,
                 rng: Optional[np.random.Generator] = None, seed: Optional[int] = None):
        if batch_size <= 0:
            raise ValueError(f"batch_size must be > 0, got {batch_size}")
        self.params = params
        self.viewport = viewport
        self.batch_size = int(batch_size)
        self.rng = rng if rng is not None else np.random.default_rng(seed)
        self.processed = 0
        self.escaped = 0
        self.increments = 0
        self.batches = 0
        self._scratch = orbit_scratch(params.iterations)

    @property
    def total(self) -> int:
        return self.params.samples

    @property
    def done(self) -> bool:
        return self.processed >= self.total

    @property
    def progress(self) -> float:
        return self.processed / self.total

    def next_batch(self) -> PartialBatch:
        if self.done:
            raise RuntimeError("All samples have already been processed.")
        count = min(self.batch_size, self.total - self.processed)
        return compute_batch(self.params, self.viewport, count, self.rng, scratch=self._scratch)

    def commit(self, buffer: AccumulationBuffer, partial: PartialBatch) -> BatchResult:
        new_max = buffer.merge(partial.density)
        self.processed += partial.processed
        self.escaped += partial.escaped
        self.increments += partial.increments
        self.batches += 1
        get_logger().debug("Batch %s committed processed=%s/%s increments=%s max_density=%s",
                           self.batches, self.processed, self.total, partial.increments, new_max)
        return BatchResult(processed=partial.processed, new_max_density=new_max,
                           escaped=partial.escaped, increments=partial.increments)

    def run(self, buffer: AccumulationBuffer) -> Iterator[BatchResult]:
        while not self.done:
            yield self.commit(buffer, self.next_batch())
