import itertools
from dataclasses import dataclass
from typing import Callable, Optional

from loguru import logger
from pymongo.collection import Collection

from crudrepo import entity as ent
from crudrepo import settings
from crudrepo.db.paginator import PagedFetcher
from crudrepo.db.query import Query, QueryDescriptor
from crudrepo.iterator import CollectionIterator, IteratorConfig
from crudrepo.utils import errors, parallel


@dataclass(frozen=True)
class RepositoryOptions:
    """Hooks customising a repository.

    :param id_generator: Builds the id of a new entity from its creation data,
        defaults to random uuid4 strings.
    :type id_generator: Callable[[dict], str], optional
    :param op_stat_handler: Receives OperationStats after every read, write or
        delete, defaults to None.
    :type op_stat_handler: Callable[[OperationStats], None], optional
    """

    id_generator: Optional[Callable] = None
    op_stat_handler: Optional[Callable] = None


@dataclass(frozen=True)
class QueryOptions:
    limit: Optional[int] = None
    sort: tuple = ()
    start_after_id: Optional[str] = None
    start_at_id: Optional[str] = None


@dataclass(frozen=True)
class BatchUpdate:
    id: str
    update: dict


def _flatten_paths(value: dict, prefix: str = "") -> dict:
    """Turn nested dicts into dotted paths so that $set merges them."""

    paths = {}
    for key, val in value.items():
        path = f"{prefix}{key}"
        if isinstance(val, dict) and val:
            paths.update(_flatten_paths(val, prefix=f"{path}."))
        else:
            paths[path] = val

    return paths


class CrudRepository:
    """A simple wrapper around a pymongo collection exposing basic CRUD
    operations on entities, plus a paginated iterator over the collection.

    Entities are dicts carrying a system-managed `id`, `createdAt` and
    `updatedAt`. The id is stored as the document `_id`.

    :param collection: Collection holding the entities.
    :type collection: pymongo.collection.Collection
    :param options: Id generator and operation accounting hooks, defaults to None.
    :type options: RepositoryOptions, optional
    """

    def __init__(self, collection: Collection, options: RepositoryOptions = None):
        self.collection = collection
        self.collection_name = collection.name
        self.options = options if options is not None else RepositoryOptions()
        self.fetcher = PagedFetcher(
            collection,
            on_read=lambda reads: self._on_repo_operation(number_of_reads=reads),
        )

    def _generate_id(self, create: dict) -> str:
        if self.options.id_generator:
            return self.options.id_generator(create)
        return ent.default_id_generator(create)

    def _on_repo_operation(self, **counts):
        if self.options.op_stat_handler:
            self.options.op_stat_handler(
                ent.OperationStats(collection_name=self.collection_name, **counts)
            )

    def _map_create_to_entity(self, create: dict) -> dict:
        timestamp = ent.now()
        entity = ent.strip_system_fields(create)
        entity.update(
            id=self._generate_id(create), createdAt=timestamp, updatedAt=timestamp
        )
        return entity

    def _map_update_to_entity(self, update: dict) -> dict:
        value = ent.strip_system_fields(update)
        value["updatedAt"] = ent.now()
        return value

    def _map_update_to_operation(self, update: dict, merge: bool = False) -> dict:
        value = self._map_update_to_entity(update)
        return {
            "$set": _flatten_paths(value) if merge else value,
            "$inc": {ent.VERSION_FIELD: 1},
        }

    def create_only(self, create: dict) -> str:
        entity = self._map_create_to_entity(create)
        self.collection.insert_one(ent.to_document(entity))
        self._on_repo_operation(number_of_writes=1)
        return entity["id"]

    def create_and_return(self, create: dict) -> dict:
        entity_id = self.create_only(create)
        new_entity = self.get_one(entity_id)
        if not new_entity:
            raise errors.CrudRepoError(
                errors.CrudRepoErrorMsg.CREATE_FAILED, self.collection_name
            )
        return new_entity

    def batch_create(self, creates: list, batch_size: int = None) -> list:
        """Create entities in groups inserted concurrently.

        Groups are not rolled back when another group fails.

        :param creates: Creation data of each entity.
        :type creates: list
        :param batch_size: Entities per group, defaults to settings.BATCH_SIZE.
        :type batch_size: int, optional
        :return: Ids of the created entities, in creates order.
        :rtype: list
        """

        entities = [self._map_create_to_entity(create) for create in creates]
        groups = parallel.chunk(entities, batch_size or settings.BATCH_SIZE)

        def submit_batch(group: list) -> int:
            result = self.collection.insert_many(
                [ent.to_document(entity) for entity in group]
            )
            self._on_repo_operation(number_of_writes=len(result.inserted_ids))
            return len(result.inserted_ids)

        parallel.run_parallel(
            submit_batch,
            [dict(group=group) for group in groups],
            max_workers=settings.WORKER_COUNT,
        )

        return [entity["id"] for entity in entities]

    def get_one(self, entity_id: str) -> Optional[dict]:
        doc = self.collection.find_one({"_id": entity_id})
        self._on_repo_operation(number_of_reads=1)
        return ent.from_document(doc) if doc is not None else None

    def get_many(self, queries: list, query_options: QueryOptions = None) -> list:
        """List entities matching all queries.

        :param queries: Predicates, as Query objects or (field, operation, value) tuples.
        :type queries: list
        :param query_options: Limit, sort and start position, defaults to None.
        :type query_options: QueryOptions, optional
        """

        query_options = query_options if query_options is not None else QueryOptions()
        descriptor = QueryDescriptor(queries, query_options.sort)

        # start_at_id wins over start_after_id when both are given
        cursor_id = query_options.start_at_id or query_options.start_after_id

        return self.fetcher.fetch(
            descriptor,
            limit=query_options.limit,
            cursor_id=cursor_id,
            inclusive=query_options.start_at_id is not None,
        )

    def get_many_by_id(self, ids: list) -> list:
        id_batches = parallel.chunk(list(ids), settings.MAX_ALLOWED_IN_IN_CLAUSE)
        result_batches = parallel.run_parallel(
            self.get_many,
            [dict(queries=[Query("id", "in", id_batch)]) for id_batch in id_batches],
            max_workers=settings.WORKER_COUNT,
        )
        return list(itertools.chain.from_iterable(result_batches))

    def iterator(self, config: IteratorConfig = None) -> CollectionIterator:
        return CollectionIterator(self, config)

    def update_only(self, entity_id: str, value: dict) -> Optional[str]:
        pre_existing_entity = self.get_one(entity_id)
        if not pre_existing_entity:
            return None
        self.collection.update_one(
            {"_id": entity_id}, self._map_update_to_operation(value)
        )
        self._on_repo_operation(number_of_writes=1)
        return entity_id

    def update_one_and_return(self, entity_id: str, value: dict) -> Optional[dict]:
        self.update_only(entity_id, value)
        return self.get_one(entity_id)

    def update_only_in_transaction(self, entity_id: str, value: dict) -> Optional[str]:
        """Update an entity unless it changed since it was read, retrying on conflict.

        The write only applies if the entity version still holds the value read
        just before. Every update bumps the version. Conflicts are retried up
        to settings.MAX_OPTIMISTIC_RETRIES times.

        :raises errors.CrudRepoError: the entity kept changing under every attempt
        :return: The entity id, None if the entity does not exist.
        :rtype: str
        """

        for attempt in range(1, settings.MAX_OPTIMISTIC_RETRIES + 1):
            doc = self.collection.find_one({"_id": entity_id})
            self._on_repo_operation(number_of_reads=1)
            if doc is None:
                return None

            result = self.collection.update_one(
                {"_id": entity_id, ent.VERSION_FIELD: doc.get(ent.VERSION_FIELD)},
                self._map_update_to_operation(value),
            )
            if result.matched_count:
                self._on_repo_operation(number_of_writes=1)
                return entity_id

            logger.warning(
                f"Entity {entity_id} changed in {self.collection_name} while updating (attempt {attempt})"
            )

        raise errors.CrudRepoError(errors.CrudRepoErrorMsg.UPDATE_CONFLICT, entity_id)

    def merge_only(self, entity_id: str, value: dict) -> Optional[str]:
        """Deep-merge value into an existing entity, nested dicts included."""

        pre_existing_entity = self.get_one(entity_id)
        if not pre_existing_entity:
            return None
        self.collection.update_one(
            {"_id": entity_id}, self._map_update_to_operation(value, merge=True)
        )
        self._on_repo_operation(number_of_writes=1)
        return entity_id

    def batch_update(self, updates: list, batch_size: int = None) -> int:
        """Apply BatchUpdate items in groups submitted concurrently.

        :return: Number of entities found and updated.
        :rtype: int
        """

        groups = parallel.chunk(list(updates), batch_size or settings.BATCH_SIZE)

        def submit_batch(group: list) -> int:
            count = 0
            for update in group:
                result = self.collection.update_one(
                    {"_id": update.id}, self._map_update_to_operation(update.update)
                )
                count += result.matched_count
            self._on_repo_operation(number_of_writes=count)
            return count

        counts = parallel.run_parallel(
            submit_batch,
            [dict(group=group) for group in groups],
            max_workers=settings.WORKER_COUNT,
        )
        return sum(counts)

    def delete(self, entity_id: str) -> bool:
        entity = self.get_one(entity_id)
        if not entity:
            return False
        self.collection.delete_one({"_id": entity_id})
        self._on_repo_operation(number_of_deletes=1)
        return True

    def batch_delete(self, ids: list, batch_size: int = None) -> int:
        groups = parallel.chunk(list(ids), batch_size or settings.BATCH_SIZE)

        def submit_batch(group: list) -> int:
            result = self.collection.delete_many({"_id": {"$in": group}})
            self._on_repo_operation(number_of_deletes=result.deleted_count)
            return result.deleted_count

        counts = parallel.run_parallel(
            submit_batch,
            [dict(group=group) for group in groups],
            max_workers=settings.WORKER_COUNT,
        )
        return sum(counts)
