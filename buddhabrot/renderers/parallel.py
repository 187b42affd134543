from __future__ import annotations

import logging
from concurrent.futures import ProcessPoolExecutor
from dataclasses import replace
from functools import partial
from typing import Callable, List, Optional, Tuple

import numpy as np

from buddhabrot.params import RenderParameters
from buddhabrot.renderers.accumulation import DEFAULT_BATCH_SIZE, AccumulationBuffer, BatchScheduler
from buddhabrot.util.logging_setup import get_logger, logging_initialiser
from buddhabrot.viewport import Viewport

_G = {}


def _init_worker(params, viewport, batch_size, log_queue, log_level):
    _G["params"] = params
    _G["viewport"] = viewport
    _G["batch_size"] = batch_size
    logging_initialiser(log_queue, log_level)


Chunk = Tuple[int, int, np.random.SeedSequence]


def _render_chunk(task: Chunk):
    # Pool workers only; _G is filled by _init_worker in each process.
    return _render_chunk_with(_G["params"], _G["viewport"], _G["batch_size"], task)


def _render_chunk_with(params: RenderParameters, viewport: Viewport, batch_size: int, task: Chunk):
    index, count, seed_seq = task
    params = replace(params, samples=count)

    scheduler = BatchScheduler(params, viewport, batch_size=batch_size, rng=np.random.default_rng(seed_seq))
    buffer = AccumulationBuffer.for_viewport(viewport)
    for _ in scheduler.run(buffer):
        pass

    get_logger().debug("Chunk %s done samples=%s increments=%s", index, count, scheduler.increments)
    return index, buffer.density, scheduler.increments


def split_samples(samples: int, chunks: int) -> List[int]:
    chunks = max(1, min(int(chunks), int(samples)))
    base, rem = divmod(int(samples), chunks)
    return [base + (1 if i < rem else 0) for i in range(chunks)]


def render_density(
    params: RenderParameters,
    viewport: Viewport,
    *,
    workers: int = 1,
    chunks: Optional[int] = None,
    batch_size: int = DEFAULT_BATCH_SIZE,
    seed: Optional[int] = None,
    log_queue=None,
    log_level: int = logging.INFO,
    on_chunk: Optional[Callable[[int, int], None]] = None,
) -> AccumulationBuffer:
    """
    Accumulate a full histogram for `params` over `viewport` outside any job.

    The sample budget is split into `chunks` with independent random streams
    spawned from `seed`, so the result depends on (seed, chunks) but not on the
    number of worker processes. `workers=1` runs in this process.
    """
    params.validate()
    logger = get_logger()
    workers = max(1, int(workers))
    sizes = split_samples(params.samples, chunks if chunks is not None else workers * 4)
    seeds = np.random.SeedSequence(seed).spawn(len(sizes))
    tasks = [(i, n, s) for i, (n, s) in enumerate(zip(sizes, seeds))]

    logger.info("Parallel render start samples=%s size=%sx%s chunks=%s workers=%s",
                params.samples, viewport.width, viewport.height, len(tasks), workers)

    buffer = AccumulationBuffer.for_viewport(viewport)

    def _collect(results):
        for done, (_, density, _increments) in enumerate(results, start=1):
            buffer.merge(density)
            if on_chunk is not None:
                on_chunk(done, len(tasks))

    if workers == 1:
        _collect(map(partial(_render_chunk_with, params, viewport, batch_size), tasks))
    else:
        with ProcessPoolExecutor(
            max_workers=workers,
            initializer=_init_worker,
            initargs=(params, viewport, batch_size, log_queue, log_level),
        ) as pool:
            _collect(pool.map(_render_chunk, tasks))

    logger.info("Parallel render done max_density=%s", buffer.max_density)
    return buffer
