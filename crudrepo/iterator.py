import dataclasses
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Optional

from loguru import logger
from tqdm import tqdm

from crudrepo import settings
from crudrepo.db.paginator import PagedFetcher
from crudrepo.db.query import QueryDescriptor
from crudrepo.utils import parallel


class IterationState(Enum):
    RUNNING = "running"
    EXHAUSTED = "exhausted"
    EARLY_EXIT = "early_exit"
    FAILED = "failed"


@dataclass(frozen=True)
class IterationResult:
    total_number_of_results: int
    last_processed_id: Optional[str]
    finished: bool
    state: IterationState


def _default_batch_size() -> int:
    return settings.BATCH_SIZE


@dataclass(frozen=True)
class IteratorConfig:
    """Settings of one iteration run over a collection.

    :param queries: Predicates ANDed together, defaults to none.
    :type queries: tuple
    :param sort: Sort keys, the first one being primary, defaults to none.
    :type sort: tuple
    :param batch_size: Number of entities fetched per page, defaults to
        settings.BATCH_SIZE.
    :type batch_size: int
    :param start_after_id: Resume after this entity id, defaults to None.
    :type start_after_id: str, optional
    :param max_workers: Bound on entities consumed at once by iterate, defaults
        to the page length.
    :type max_workers: int, optional
    :param progress: Display a progress bar of processed entities, defaults to False.
    :type progress: bool
    """

    queries: tuple = ()
    sort: tuple = ()
    batch_size: int = field(default_factory=_default_batch_size)
    start_after_id: Optional[str] = None
    max_workers: Optional[int] = None
    progress: bool = False

    def __post_init__(self):
        if isinstance(self.batch_size, bool) or not isinstance(self.batch_size, int):
            raise ValueError(f"Batch size must be an integer, got {self.batch_size!r}.")
        if self.batch_size < 1:
            raise ValueError(f"Batch size must be positive, got {self.batch_size}.")
        if self.max_workers is not None:
            if isinstance(self.max_workers, bool) or not isinstance(self.max_workers, int):
                raise ValueError(f"Max workers must be an integer, got {self.max_workers!r}.")
            if self.max_workers < 1:
                raise ValueError(f"Max workers must be positive, got {self.max_workers}.")
        object.__setattr__(self, "queries", tuple(self.queries))
        object.__setattr__(self, "sort", tuple(self.sort))

    @property
    def descriptor(self) -> QueryDescriptor:
        return QueryDescriptor(self.queries, self.sort)

    def with_queries(self, queries) -> "IteratorConfig":
        return dataclasses.replace(self, queries=tuple(queries))

    def with_sort(self, sort) -> "IteratorConfig":
        return dataclasses.replace(self, sort=tuple(sort))

    def with_batch_size(self, batch_size: int) -> "IteratorConfig":
        return dataclasses.replace(self, batch_size=batch_size)

    def with_start_after_id(self, start_after_id: Optional[str]) -> "IteratorConfig":
        return dataclasses.replace(self, start_after_id=start_after_id)


def iterate_batch(
    fetcher: PagedFetcher, config: IteratorConfig, page_consumer: Callable
) -> IterationResult:
    """Feed the query results to page_consumer one page at a time.

    A page is only fetched once the consumer is done with the previous one, as
    its position depends on the last entity of that page. Iteration ends when a
    page comes back shorter than the batch size, or when the consumer returns a
    truthy value. Errors raised by the fetcher or the consumer propagate.

    :param fetcher: Source of pages.
    :type fetcher: PagedFetcher
    :param config: Query, batch size and resume cursor of the run.
    :type config: IteratorConfig
    :param page_consumer: Called with each non-empty page, returns True to stop.
    :type page_consumer: Callable[[list], Optional[bool]]
    :return: Summary of the run.
    :rtype: IterationResult
    """

    descriptor = config.descriptor
    cursor = config.start_after_id
    total_number_of_results = 0
    last_processed_id = None
    finished = False
    state = IterationState.RUNNING

    progress_bar = tqdm(unit="entity", disable=not config.progress)
    try:
        while state is IterationState.RUNNING:
            page = fetcher.fetch_page(descriptor, config.batch_size, cursor)
            if not page:
                finished = True
                state = IterationState.EXHAUSTED
                break

            cursor = page[-1]["id"]
            last_processed_id = cursor
            total_number_of_results += len(page)
            finished = len(page) < config.batch_size
            logger.debug(f"Consuming page of {len(page)} entities ending at {cursor}")

            if page_consumer(page):
                finished = False
                state = IterationState.EARLY_EXIT
            elif finished:
                state = IterationState.EXHAUSTED
            progress_bar.update(len(page))
    except Exception as e:
        state = IterationState.FAILED
        logger.error(
            f"Iteration {state.value} after {total_number_of_results} entities, last processed id {last_processed_id}: {e}"
        )
        raise
    finally:
        progress_bar.close()

    logger.info(
        f"Iteration {state.value} after {total_number_of_results} entities, last processed id {last_processed_id}"
    )

    return IterationResult(
        total_number_of_results=total_number_of_results,
        last_processed_id=last_processed_id,
        finished=finished,
        state=state,
    )


class CollectionIterator:
    """Fluent entry point to iterate over the entities of a repository.

    Configuration calls return a new iterator, the receiver is left untouched:

        repo.iterator().batch_size(100).sort([Sort("greeting")]).iterate(print)

    :param repo: Repository providing the page fetcher.
    :type repo: crudrepo.repository.CrudRepository
    :param config: Starting configuration, defaults to IteratorConfig().
    :type config: IteratorConfig, optional
    """

    def __init__(self, repo, config: IteratorConfig = None):
        self.repo = repo
        self.config = config if config is not None else IteratorConfig()

    def _with_config(self, config: IteratorConfig) -> "CollectionIterator":
        return CollectionIterator(self.repo, config)

    def queries(self, queries) -> "CollectionIterator":
        return self._with_config(self.config.with_queries(queries))

    def batch_size(self, batch_size: int) -> "CollectionIterator":
        return self._with_config(self.config.with_batch_size(batch_size))

    def sort(self, sort) -> "CollectionIterator":
        return self._with_config(self.config.with_sort(sort))

    def start_after_id(self, start_after_id: Optional[str]) -> "CollectionIterator":
        return self._with_config(self.config.with_start_after_id(start_after_id))

    def max_workers(self, max_workers: Optional[int]) -> "CollectionIterator":
        return self._with_config(dataclasses.replace(self.config, max_workers=max_workers))

    def progress(self, progress: bool = True) -> "CollectionIterator":
        return self._with_config(dataclasses.replace(self.config, progress=progress))

    def iterate_batch(self, page_consumer: Callable) -> IterationResult:
        return iterate_batch(self.repo.fetcher, self.config, page_consumer)

    def iterate(
        self, entity_consumer: Callable, error_handler: Callable = None
    ) -> IterationResult:
        """Consume every entity, the entities of a page concurrently.

        :param entity_consumer: Called with each entity, returns True to stop
            once the current page is done.
        :type entity_consumer: Callable[[dict], Optional[bool]]
        :param error_handler: Called with (error, entity) when entity_consumer
            raises, see parallel.fan_out, defaults to None.
        :type error_handler: Callable, optional
        """

        page_consumer = parallel.fan_out(
            entity_consumer,
            error_handler=error_handler,
            max_workers=self.config.max_workers,
        )
        return self.iterate_batch(page_consumer)
