"""Worker-indexed scratch arena and element partitioning.

Each worker owns a contiguous block of elements and a private set of
scratch buffers (``fhat``, ``fstar``, ``flux_temp``) sized for that block.
The buffers are allocated once at setup and overwritten on every RHS
evaluation; no buffer is ever shared between workers.

Workers are run either inline (one worker) or on a
``concurrent.futures.ThreadPoolExecutor``.  NumPy releases the GIL inside
its array kernels, so the element blocks progress concurrently.  A worker
writes only to the slices of shared arrays that belong to its own block.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Callable

import numpy as np

logger = logging.getLogger(__name__)


@dataclass
class ScratchBuffers:
    """Per-worker scratch space for one block of elements.

    Attributes:
        fhat1: High-order FV-form flux in x, shape (nvars, n+1, n, m).
        fhat2: High-order FV-form flux in y, shape (nvars, n, n+1, m).
        fstar1: Low-order subcell flux in x, shape (nvars, n+1, n, m).
        fstar2: Low-order subcell flux in y, shape (nvars, n, n+1, m).
        flux_temp: Split-form volume flux per node, shape (nvars, n, n, m).
    """

    fhat1: np.ndarray
    fhat2: np.ndarray
    fstar1: np.ndarray
    fstar2: np.ndarray
    flux_temp: np.ndarray

    @classmethod
    def allocate(cls, nvars: int, nnodes: int, nelements: int) -> ScratchBuffers:
        n = nnodes
        return cls(
            fhat1=np.zeros((nvars, n + 1, n, nelements)),
            fhat2=np.zeros((nvars, n, n + 1, nelements)),
            fstar1=np.zeros((nvars, n + 1, n, nelements)),
            fstar2=np.zeros((nvars, n, n + 1, nelements)),
            flux_temp=np.zeros((nvars, n, n, nelements)),
        )


class ElementPartition:
    """Split ``nelements`` into ``n_workers`` contiguous element blocks.

    Args:
        nelements: Total number of elements.
        n_workers: Requested number of workers (capped at ``nelements``).
    """

    def __init__(self, nelements: int, n_workers: int = 1) -> None:
        if n_workers < 1:
            raise ValueError(f"n_workers must be >= 1, got {n_workers}")
        self.nelements = nelements
        self.n_workers = min(n_workers, nelements)
        bounds = np.linspace(0, nelements, self.n_workers + 1).round().astype(int)
        self.blocks = [slice(int(a), int(b)) for a, b in zip(bounds[:-1], bounds[1:])]
        self._executor: ThreadPoolExecutor | None = None
        if self.n_workers > 1:
            self._executor = ThreadPoolExecutor(
                max_workers=self.n_workers, thread_name_prefix="subcell-worker",
            )

    def block_size(self, worker: int) -> int:
        block = self.blocks[worker]
        return block.stop - block.start

    def run(self, fn: Callable[[int, slice], None]) -> None:
        """Call ``fn(worker, elements)`` for every block and wait for all.

        Exceptions raised inside a worker propagate to the caller.
        """
        if self._executor is None:
            for worker, elements in enumerate(self.blocks):
                fn(worker, elements)
            return
        futures = [
            self._executor.submit(fn, worker, elements)
            for worker, elements in enumerate(self.blocks)
        ]
        for future in futures:
            future.result()

    def close(self) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None


class ScratchArena:
    """Scratch buffers indexed by worker, sized once from a partition.

    Args:
        partition: Element partition defining the block of each worker.
        nvars: Number of conservative variables.
        nnodes: Nodes per direction.
    """

    def __init__(self, partition: ElementPartition, nvars: int, nnodes: int) -> None:
        self.partition = partition
        self._buffers = [
            ScratchBuffers.allocate(nvars, nnodes, partition.block_size(w))
            for w in range(partition.n_workers)
        ]
        logger.debug(
            "Scratch arena: %d worker(s), block sizes %s",
            partition.n_workers,
            [partition.block_size(w) for w in range(partition.n_workers)],
        )

    def buffers(self, worker: int) -> ScratchBuffers:
        return self._buffers[worker]

    @property
    def n_workers(self) -> int:
        return self.partition.n_workers
