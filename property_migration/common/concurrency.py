"""Bounded fan-out of independent work units over a thread pool."""

import logging
import threading
from collections.abc import Callable, Iterable, Iterator
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from itertools import islice
from typing import Optional, TypeVar

T = TypeVar("T")
R = TypeVar("R")

logger = logging.getLogger(__name__)


def bounded_map(
    func: Callable[[T], R],
    items: Iterable[T],
    max_workers: int,
    cancel_event: Optional[threading.Event] = None,
    max_in_flight: Optional[int] = None,
) -> Iterator[tuple[T, Optional[R], Optional[Exception]]]:
    """
    Run `func` over `items` with at most `max_in_flight` units submitted.

    `items` is consumed lazily, so a generator of windows is never fully
    materialized. Results are yielded in completion order as
    ``(item, result, error)``; an exception raised by `func` is returned in
    the `error` slot instead of propagating.

    When `cancel_event` is set no further items are submitted, but units
    already in flight are awaited and yielded.

    Args:
        func: Work function for one item
        items: Iterable of work items
        max_workers: Thread pool size
        cancel_event: Optional cooperative cancellation flag
        max_in_flight: Submission bound (default: 2 * max_workers)

    Raises:
        Exception: Whatever `items` raised while being consumed, re-raised
                   only after every unit already submitted has been yielded
    """
    workers = max(1, max_workers)
    bound = max_in_flight or workers * 2
    iterator = iter(items)
    pending: dict[Future, T] = {}
    input_error: Optional[Exception] = None

    def cancelled() -> bool:
        return cancel_event is not None and cancel_event.is_set()

    def submit_more(executor: ThreadPoolExecutor) -> None:
        nonlocal input_error
        if cancelled() or input_error is not None:
            return
        try:
            for item in islice(iterator, bound - len(pending)):
                pending[executor.submit(func, item)] = item
        except Exception as e:
            logger.warning(
                "Work input failed, draining in-flight units",
                extra={"in_flight": len(pending), "error": str(e)},
            )
            input_error = e

    with ThreadPoolExecutor(max_workers=workers) as executor:
        submit_more(executor)
        while pending:
            done, _ = wait(pending, return_when=FIRST_COMPLETED)
            for future in done:
                item = pending.pop(future)
                error = future.exception()
                if error is not None:
                    yield item, None, error
                else:
                    yield item, future.result(), None
            submit_more(executor)

    if input_error is not None:
        raise input_error
    if cancelled():
        logger.info("Work submission stopped by cancellation")
