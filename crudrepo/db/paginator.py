from typing import Callable

from loguru import logger
from pymongo.collection import Collection

from crudrepo.db.query import QueryDescriptor
from crudrepo.entity import from_document


class PagedFetcher:
    """Fetch one page of entities at a time from a collection.

    :param collection: Collection to read entities from.
    :type collection: pymongo.collection.Collection
    :param on_read: Called with the number of reads charged by each fetch,
        defaults to None.
    :type on_read: Callable[[int], None], optional
    """

    def __init__(self, collection: Collection, on_read: Callable = None):
        self.collection = collection
        self.on_read = on_read

    def fetch_page(
        self, descriptor: QueryDescriptor, page_size: int, after_id: str = None
    ) -> list:
        """Retrieve the page of entities following `after_id`.

        :param descriptor: Predicates and sort keys of the iterated query.
        :type descriptor: QueryDescriptor
        :param page_size: Maximum number of entities in the page.
        :type page_size: int
        :param after_id: Id of the last entity of the previous page, None to
            start from the beginning of the results, defaults to None.
        :type after_id: str, optional
        :raises ValueError: page_size is not a positive integer
        :return: Entities in sort order, at most page_size of them.
        :rtype: list
        """

        if isinstance(page_size, bool) or not isinstance(page_size, int):
            raise ValueError(f"Page size must be an integer, got {page_size!r}.")
        if page_size < 1:
            raise ValueError(f"Page size must be positive, got {page_size}.")

        return self.fetch(descriptor, limit=page_size, cursor_id=after_id)

    def fetch(
        self,
        descriptor: QueryDescriptor,
        limit: int = None,
        cursor_id: str = None,
        inclusive: bool = False,
    ) -> list:
        """Run the descriptor's query, positioned relative to a cursor entity.

        An unknown cursor id positions the query at the start of the results.
        """

        position = None
        if cursor_id is not None:
            cursor_doc = self.collection.find_one({"_id": cursor_id})
            if cursor_doc is None:
                logger.debug(
                    f"Cursor {cursor_id} not found in {self.collection.name}, starting from the beginning."
                )
            else:
                position = descriptor.position_filter(cursor_doc, inclusive=inclusive)

        cursor = self.collection.find(
            filter=descriptor.to_filter(extra=position),
            sort=descriptor.to_sort(),
            limit=limit if limit else 0,
        )
        entities = [from_document(doc) for doc in cursor]

        # queries that return 0 results still count as one read
        if self.on_read is not None:
            self.on_read(max(len(entities), 1))

        return entities
