"""Bounded fan-out of block transfers onto a worker pool."""

from __future__ import annotations

from concurrent.futures import FIRST_COMPLETED, Executor, Future, wait
from typing import Callable, Iterable, TypeVar

from cbt_backup.domain.services import CancellationToken


T = TypeVar("T")
R = TypeVar("R")


def run_bounded(
    executor: Executor,
    items: Iterable[T],
    work: Callable[[T], R],
    on_result: Callable[[R], None],
    max_in_flight: int,
    token: CancellationToken | None = None,
) -> None:
    """Apply ``work`` to every item with at most ``max_in_flight`` pending.

    ``items`` is consumed lazily, so a slow pool applies backpressure to
    the producer. ``on_result`` runs on the calling thread.

    The first failure, from a worker or from ``items``, cancels the
    transfers not yet started and is re-raised. Transfers already
    running finish before the executor shuts down.
    """
    in_flight: set[Future] = set()
    try:
        for item in items:
            if token is not None:
                token.raise_if_cancelled()
            while len(in_flight) >= max_in_flight:
                done, in_flight = wait(in_flight, return_when=FIRST_COMPLETED)
                for future in done:
                    on_result(future.result())
            in_flight.add(executor.submit(work, item))

        while in_flight:
            done, in_flight = wait(in_flight, return_when=FIRST_COMPLETED)
            for future in done:
                on_result(future.result())
    except BaseException:
        for future in in_flight:
            future.cancel()
        raise
