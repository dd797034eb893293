from concurrent import futures
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable

from loguru import logger


class Decision(Enum):
    """Verdict of an error handler on a failed entity."""

    CONTINUE = "continue"
    ABORT = "abort"


@dataclass(frozen=True)
class EntityOutcome:
    entity: dict
    stop: bool = False
    error: Exception = None


def chunk(items: list, size: int) -> list:
    """Split items into consecutive groups of at most size elements."""

    if size < 1:
        raise ValueError(f"Chunk size must be positive, got {size}.")

    return [items[i : i + size] for i in range(0, len(items), size)]


def run_parallel(fn: Any, kwargs_list: list, max_workers: int = None) -> list:
    """Parallelize a function call over threads.

    Every call runs to completion, a failing call does not undo the others.

    :param fn: Function to be run in parallel.
    :type fn: function
    :param kwargs_list: List of keyword arguments to be provided with
        function call.
    :type kwargs_list: list
    :param max_workers: Maximum number of threads employed to run function,
        defaults to None.
    :type max_workers: int, optional
    :raises Exception: first error raised by a call, once all calls are done
    :return: Results returned by individual function calls, in kwargs_list order.
    :rtype: list
    """

    if not kwargs_list:
        return []

    with futures.ThreadPoolExecutor(max_workers=max_workers) as executor:
        futures_list = [executor.submit(fn, **kwargs) for kwargs in kwargs_list]

    results = []
    first_error = None
    for i, future in enumerate(futures_list):
        error = future.exception()
        if error is not None:
            logger.error(f"Error while running parallel task ({i+1}/{len(kwargs_list)}): {error}")
            first_error = first_error if first_error is not None else error
            continue
        results.append(future.result())

    if first_error is not None:
        raise first_error

    return results


def _consume_entity(entity_consumer: Callable, entity: dict) -> EntityOutcome:
    try:
        return EntityOutcome(entity, stop=bool(entity_consumer(entity)))
    except Exception as e:
        return EntityOutcome(entity, error=e)


def fan_out(
    entity_consumer: Callable,
    error_handler: Callable = None,
    max_workers: int = None,
) -> Callable:
    """Wrap a per-entity consumer into a page consumer.

    Entities of a page are consumed concurrently, one thread per entity unless
    max_workers is lower, and the page is complete once every entity settled.
    The page asks to stop if any entity consumer returned a truthy value.

    A failed entity is passed to error_handler(error, entity). Returning None or
    Decision.CONTINUE keeps iterating, Decision.ABORT re-raises the entity's
    error. Without a handler, or when the handler raises, the error propagates
    and the outcomes of the remaining entities of the page are dropped.

    :param entity_consumer: Called with each entity of the page.
    :type entity_consumer: Callable[[dict], Any]
    :param error_handler: Called with (error, entity) for failed entities,
        defaults to None.
    :type error_handler: Callable[[Exception, dict], Decision], optional
    :param max_workers: Upper bound on concurrent entity consumers, defaults to
        the page length.
    :type max_workers: int, optional
    :return: Page consumer returning whether iteration should stop.
    :rtype: Callable[[list], bool]
    """

    def consume_page(page: list) -> bool:
        workers = len(page) if not max_workers else min(len(page), max_workers)
        with futures.ThreadPoolExecutor(max_workers=max(workers, 1)) as executor:
            pending = [
                executor.submit(_consume_entity, entity_consumer, entity)
                for entity in page
            ]
        outcomes = [future.result() for future in pending]

        for outcome in outcomes:
            if outcome.error is None:
                continue
            if error_handler is None:
                raise outcome.error
            decision = error_handler(outcome.error, outcome.entity)
            if decision is Decision.ABORT:
                raise outcome.error
            logger.debug(
                f"Entity {outcome.entity.get('id')} failed and was handled: {outcome.error}"
            )

        return any(outcome.stop for outcome in outcomes)

    return consume_page
