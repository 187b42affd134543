from __future__ import annotations

import logging
import math
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple, Union

import numpy as np

from buddhabrot.color import colorize
from buddhabrot.errors import ComputationFailure, ExportFailure, InvalidParameters
from buddhabrot.export.raster import export_raster
from buddhabrot.export.vector import DEFAULT_STEP, export_vector
from buddhabrot.params import Preset, RenderParameters, get_preset, get_presets
from buddhabrot.renderers.accumulation import DEFAULT_BATCH_SIZE, AccumulationBuffer, BatchScheduler
from buddhabrot.renderers.parallel import render_density
from buddhabrot.util.logging_setup import get_logger
from buddhabrot.viewport import Viewport

ProgressCallback = Callable[[float, float], None]
CompleteCallback = Callable[[AccumulationBuffer], None]
ErrorCallback = Callable[[ComputationFailure], None]


class JobStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    CANCELLED = "cancelled"
    COMPLETE = "complete"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self in (JobStatus.CANCELLED, JobStatus.COMPLETE, JobStatus.FAILED)


@dataclass
class RenderJob:
    """One logical render. `buffer` is only set once the job is Complete."""

    id: int
    parameters: RenderParameters
    viewport: Viewport
    status: JobStatus = JobStatus.PENDING
    progress: float = 0.0
    processed: int = 0
    max_density: float = 0.0
    buffer: Optional[AccumulationBuffer] = None
    error: Optional[str] = None
    started_at: Optional[float] = None
    finished_at: Optional[float] = None


@dataclass(frozen=True)
class PerformanceMetrics:
    elapsed_seconds: float
    samples_per_second: float
    memory_bytes: int
    total_samples: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "elapsed_seconds": self.elapsed_seconds,
            "samples_per_second": self.samples_per_second,
            "memory_bytes": self.memory_bytes,
            "total_samples": self.total_samples,
        }


@dataclass(frozen=True)
class _Callbacks:
    on_progress: Optional[ProgressCallback] = None
    on_complete: Optional[CompleteCallback] = None
    on_error: Optional[ErrorCallback] = None
    on_cancel: Optional[Callable[[RenderJob], None]] = None


def _notify(callback, *args) -> None:
    if callback is None:
        return
    try:
        callback(*args)
    except Exception:
        get_logger().exception("Render callback %r raised", callback)


class JobHandle:
    """What `start()`/`render()` give back to the host for one job."""

    def __init__(self, controller: "RenderJobController", job: RenderJob, done: threading.Event):
        self._controller = controller
        self._job = job
        self._done = done

    @property
    def id(self) -> int:
        return self._job.id

    @property
    def job(self) -> RenderJob:
        return self._job

    @property
    def status(self) -> JobStatus:
        return self._job.status

    @property
    def progress(self) -> float:
        return self._job.progress

    @property
    def buffer(self) -> Optional[AccumulationBuffer]:
        return self._job.buffer if self._job.status is JobStatus.COMPLETE else None

    def cancel(self) -> bool:
        return self._controller._cancel_job(self._job)

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until the worker has delivered its terminal report."""
        return self._done.wait(timeout)

    def done(self) -> bool:
        return self._done.is_set()


class RenderJobController:
    """
    Owns the pending render parameters and at most one running job.

    Each job samples on its own background thread. Batches are computed
    without the lock and committed under it, after checking that the job's
    generation id is still the current one; a cancelled or superseded job
    therefore never writes again once `cancel()`/`start()` has returned.
    Progress, completion, error and cancel reports all come from the job's
    thread, in that order, and nothing follows the terminal one. Callbacks run
    without the lock held, so they may call back into the controller. A
    progress report whose generation check passed before `cancel()` may still
    be delivered; none is checked afterwards.
    """

    def __init__(
        self,
        width: int = 800,
        height: int = 600,
        *,
        parameters: Optional[RenderParameters] = None,
        batch_size: int = DEFAULT_BATCH_SIZE,
        seed: Optional[int] = None,
        workers: int = 1,
        vector_step: int = DEFAULT_STEP,
        log_queue=None,
        log_level: int = logging.INFO,
    ):
        if batch_size <= 0:
            raise InvalidParameters(f"batch_size must be > 0, got {batch_size}")
        self._check_size(width, height)
        self.width = int(width)
        self.height = int(height)
        self.batch_size = int(batch_size)
        self.seed = seed
        self.workers = max(1, int(workers))
        self.vector_step = int(vector_step)
        self.log_queue = log_queue
        self.log_level = log_level

        self._lock = threading.RLock()
        self._parameters = (parameters or RenderParameters()).validate()
        self._next_id = 0
        self._current_id: Optional[int] = None
        self._job: Optional[RenderJob] = None
        self._live: Optional[Tuple[int, AccumulationBuffer]] = None
        self._completed: Optional[RenderJob] = None
        self._export_pool: Optional[ThreadPoolExecutor] = None

    @classmethod
    def from_config(cls, cfg: Mapping[str, Any], **kwargs) -> "RenderJobController":
        return cls(
            cfg["width"], cfg["height"],
            parameters=RenderParameters.from_dict(cfg["parameters"]),
            batch_size=cfg["batch_size"],
            seed=cfg.get("seed"),
            workers=cfg.get("workers", 1),
            vector_step=cfg.get("vector_step", DEFAULT_STEP),
            **kwargs,
        )

    @staticmethod
    def _check_size(width: int, height: int) -> None:
        if int(width) <= 0 or int(height) <= 0:
            raise InvalidParameters(f"Resolution must be positive, got {width}x{height}")

    # Parameters and presets

    @property
    def parameters(self) -> RenderParameters:
        return self._parameters

    @property
    def viewport(self) -> Viewport:
        return Viewport.from_parameters(self._parameters, self.width, self.height)

    @property
    def current_job(self) -> Optional[RenderJob]:
        return self._job

    def set_parameters(self, params: Union[RenderParameters, Mapping[str, Any], None] = None, **changes) -> RenderParameters:
        """Replace (RenderParameters) or merge (mapping / keywords) the pending parameters."""
        if isinstance(params, RenderParameters):
            if changes:
                raise InvalidParameters("Pass either a RenderParameters value or field changes, not both.")
            new = params.validate()
        else:
            merged = dict(params or {})
            merged.update(changes)
            new = self._parameters.merged(merged)
        with self._lock:
            self._parameters = new
        return new

    def get_presets(self) -> List[Preset]:
        return get_presets()

    def apply_preset(self, name: str) -> RenderParameters:
        """Merge a named preset into the pending parameters. A running job keeps its own."""
        preset = get_preset(name)
        new = self.set_parameters(preset.parameters.to_dict())
        get_logger().info("Preset %s applied", name)
        return new

    load_preset = apply_preset

    # Viewport interaction, pending parameters only

    @staticmethod
    def _check_factor(factor: float) -> float:
        if isinstance(factor, bool) or not isinstance(factor, (int, float)) or not math.isfinite(factor) or factor <= 0:
            raise InvalidParameters(f"zoom factor must be a finite number > 0, got {factor!r}")
        return float(factor)

    def zoom_in(self, factor: float = 2.0) -> RenderParameters:
        factor = self._check_factor(factor)
        return self.set_parameters(zoom=self.viewport.zoomed(factor).zoom)

    def zoom_out(self, factor: float = 2.0) -> RenderParameters:
        factor = self._check_factor(factor)
        return self.set_parameters(zoom=self.viewport.zoomed(1.0 / factor).zoom)

    def pan_to(self, screen_x: float, screen_y: float) -> RenderParameters:
        """Re-centre on the plane point under pixel (screen_x, screen_y)."""
        moved = self.viewport.centered_on(screen_x, screen_y)
        return self.set_parameters(center_x=moved.center_x, center_y=moved.center_y)

    def reset_view(self) -> RenderParameters:
        home = RenderParameters()
        return self.set_parameters(zoom=home.zoom, center_x=home.center_x, center_y=home.center_y)

    def resize(self, width: int, height: int) -> Viewport:
        self._check_size(width, height)
        with self._lock:
            self.width = int(width)
            self.height = int(height)
        return self.viewport

    # Jobs

    def render(self, on_progress: Optional[ProgressCallback] = None, on_complete: Optional[CompleteCallback] = None,
               on_error: Optional[ErrorCallback] = None, on_cancel=None) -> JobHandle:
        return self.start(None, on_progress=on_progress, on_complete=on_complete, on_error=on_error, on_cancel=on_cancel)

    def start(
        self,
        params: Union[RenderParameters, Mapping[str, Any], None] = None,
        *,
        on_progress: Optional[ProgressCallback] = None,
        on_complete: Optional[CompleteCallback] = None,
        on_error: Optional[ErrorCallback] = None,
        on_cancel: Optional[Callable[[RenderJob], None]] = None,
    ) -> JobHandle:
        """
        Validate `params` (default: the pending parameters) and start a new job,
        superseding any job still in flight. Raises InvalidParameters before
        anything changes.
        """
        if params is None:
            params = self._parameters
        elif isinstance(params, RenderParameters):
            params = params.validate()
        else:
            params = RenderParameters.from_dict(params)

        logger = get_logger()
        callbacks = _Callbacks(on_progress, on_complete, on_error, on_cancel)
        done = threading.Event()
        with self._lock:
            if self._job is not None:
                self._cancel_locked(self._job, reason="superseded")
            self._completed = None

            self._next_id += 1
            job = RenderJob(id=self._next_id, parameters=params,
                            viewport=Viewport.from_parameters(params, self.width, self.height))
            self._job = job
            self._current_id = job.id

            thread = threading.Thread(target=self._run, args=(job, callbacks, done),
                                      name=f"buddhabrot-job-{job.id}", daemon=True)
            logger.info("Job %s start iterations=%s samples=%s zoom=%s center=(%s, %s) size=%sx%s scheme=%s",
                        job.id, params.iterations, params.samples, params.zoom, params.center_x, params.center_y,
                        self.width, self.height, params.color_scheme.value)
            thread.start()
        return JobHandle(self, job, done)

    def cancel(self) -> bool:
        with self._lock:
            if self._job is None:
                return False
            return self._cancel_locked(self._job, reason="cancelled")

    def _cancel_job(self, job: RenderJob) -> bool:
        with self._lock:
            return self._cancel_locked(job, reason="cancelled")

    def _cancel_locked(self, job: RenderJob, *, reason: str) -> bool:
        if job.status.terminal:
            return False
        job.status = JobStatus.CANCELLED
        job.finished_at = time.perf_counter()
        if self._current_id == job.id:
            self._current_id = None
        if self._live is not None and self._live[0] == job.id:
            self._live = None
        get_logger().info("Job %s %s at progress=%.3f", job.id, reason, job.progress)
        return True

    def _is_current(self, job: RenderJob) -> bool:
        return self._current_id == job.id and not job.status.terminal

    def _report(self, job: RenderJob, callback, *args) -> None:
        # Checked under the lock, delivered outside it.
        with self._lock:
            if not self._is_current(job):
                return
        _notify(callback, *args)

    def _run(self, job: RenderJob, callbacks: _Callbacks, done: threading.Event) -> None:
        logger = get_logger()
        try:
            try:
                finished = self._sample(job, callbacks)
            except Exception as e:
                logger.exception("Job %s failed", job.id)
                if self._fail(job, e, callbacks):
                    return
                finished = False
            if not finished:
                logger.debug("Job %s stopped, in-flight batch discarded", job.id)
                _notify(callbacks.on_cancel, job)
        finally:
            done.set()

    def _sample(self, job: RenderJob, callbacks: _Callbacks) -> bool:
        """Run every batch of `job`. Returns False as soon as the job is no longer current."""
        with self._lock:
            if not self._is_current(job):
                return False
            job.status = JobStatus.RUNNING
            job.started_at = time.perf_counter()

        buffer = AccumulationBuffer.for_viewport(job.viewport)
        scheduler = BatchScheduler(job.parameters, job.viewport, batch_size=self.batch_size,
                                   rng=np.random.default_rng(self.seed))
        with self._lock:
            if not self._is_current(job):
                return False
            self._live = (job.id, buffer)

        while not scheduler.done:
            partial = scheduler.next_batch()
            with self._lock:
                if not self._is_current(job):
                    return False
                result = scheduler.commit(buffer, partial)
                job.processed = scheduler.processed
                job.progress = scheduler.progress
                job.max_density = result.new_max_density
                report = (job.progress, result.new_max_density)
            self._report(job, callbacks.on_progress, *report)

        with self._lock:
            if not self._is_current(job):
                return False
            job.status = JobStatus.COMPLETE
            job.buffer = buffer
            job.finished_at = time.perf_counter()
            self._current_id = None
            self._live = None
            self._completed = job
            get_logger().info("Job %s complete batches=%s escaped=%s increments=%s max_density=%s time=%.2fs",
                              job.id, scheduler.batches, scheduler.escaped, scheduler.increments,
                              buffer.max_density, job.finished_at - job.started_at)
        _notify(callbacks.on_complete, buffer)
        return True

    def _fail(self, job: RenderJob, error: Exception, callbacks: _Callbacks) -> bool:
        failure = ComputationFailure(f"{type(error).__name__}: {error}")
        failure.__cause__ = error
        with self._lock:
            if not self._is_current(job):
                return False
            job.status = JobStatus.FAILED
            job.error = str(failure)
            job.finished_at = time.perf_counter()
            self._current_id = None
            self._live = None
        _notify(callbacks.on_error, failure)
        return True

    # Results

    def preview(self) -> Optional[np.ndarray]:
        """Colorized copy of the running job's buffer (or the last completed one)."""
        with self._lock:
            if self._live is not None and self._job is not None and self._live[0] == self._job.id:
                density = self._live[1].density.copy()
                max_density = self._live[1].max_density
                scheme = self._job.parameters.color_scheme
            elif self._completed is not None:
                density = self._completed.buffer.density
                max_density = self._completed.buffer.max_density
                scheme = self._completed.parameters.color_scheme
            else:
                return None
        return colorize(density, max_density, scheme)

    def get_performance_metrics(self) -> PerformanceMetrics:
        with self._lock:
            job = self._completed
        if job is None:
            raise RuntimeError("Performance metrics are only available after a render completes.")
        elapsed = job.finished_at - job.started_at
        return PerformanceMetrics(
            elapsed_seconds=elapsed,
            samples_per_second=job.parameters.samples / elapsed if elapsed > 0 else 0.0,
            memory_bytes=job.buffer.nbytes,
            total_samples=job.parameters.samples,
        )

    def export_image(self, fmt: str = "raster", quality: float = 0.95, *, image_format: str = "PNG",
                     scale: int = 1) -> bytes:
        """
        Encode the last completed render.

        raster: Pillow container `image_format`. With `scale > 1` the sampling
        is re-run at scale x the resolution and scale^2 x the samples instead
        of resizing the existing buffer.
        vector: SVG on a grid of round(vector_step / quality) pixels.
        """
        if isinstance(quality, bool) or not isinstance(quality, (int, float)) or not 0.0 <= quality <= 1.0:
            raise InvalidParameters(f"quality must be within [0, 1], got {quality!r}")
        if isinstance(scale, bool) or not isinstance(scale, int) or scale < 1:
            raise InvalidParameters(f"scale must be a positive integer, got {scale!r}")
        if fmt == "vector" and scale != 1:
            raise InvalidParameters("Vector export has no scale; it always uses the rendered buffer.")
        with self._lock:
            job = self._completed
        if job is None:
            raise ExportFailure("No completed render to export.")
        scheme = job.parameters.color_scheme

        if fmt == "raster":
            buffer = job.buffer if scale == 1 else self._rerender(job, scale)
            return export_raster(buffer, scheme, image_format=image_format, quality=quality)
        if fmt == "vector":
            step = max(1, int(round(self.vector_step / max(quality, 0.05))))
            return export_vector(job.buffer, scheme, step)
        raise InvalidParameters(f"Unknown export format {fmt!r} (expected 'raster' or 'vector')")

    def export_image_async(self, fmt: str = "raster", quality: float = 0.95, **kwargs) -> "Future[bytes]":
        with self._lock:
            if self._export_pool is None:
                self._export_pool = ThreadPoolExecutor(max_workers=1, thread_name_prefix="buddhabrot-export")
            pool = self._export_pool
        return pool.submit(self.export_image, fmt, quality, **kwargs)

    def _rerender(self, job: RenderJob, scale: int) -> AccumulationBuffer:
        viewport = job.viewport.scaled(scale)
        params = replace(job.parameters, samples=job.parameters.samples * int(scale) ** 2)
        get_logger().info("Upscaled export x%s re-rendering %s samples at %sx%s",
                          scale, params.samples, viewport.width, viewport.height)
        try:
            return render_density(params, viewport, workers=self.workers, batch_size=self.batch_size,
                                  seed=self.seed, log_queue=self.log_queue, log_level=self.log_level)
        except Exception as e:
            raise ExportFailure(f"Upscaled re-render failed: {e}") from e

    def close(self) -> None:
        self.cancel()
        with self._lock:
            pool, self._export_pool = self._export_pool, None
        if pool is not None:
            pool.shutdown(wait=True)

    def __enter__(self) -> "RenderJobController":
        return self

    def __exit__(self, *exc) -> None:
        self.close()
