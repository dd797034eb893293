import datetime
import uuid
from dataclasses import dataclass

# bumped by every update, compared by conditional updates; missing means never updated
VERSION_FIELD = "_version"

SYSTEM_FIELDS = ("id", "createdAt", "updatedAt", VERSION_FIELD)


@dataclass(frozen=True)
class OperationStats:
    """Counts of store operations reported to the repository op-stat handler."""

    collection_name: str
    number_of_reads: int = 0
    number_of_writes: int = 0
    number_of_deletes: int = 0


def default_id_generator(create: dict) -> str:
    return str(uuid.uuid4())


def now() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


def strip_system_fields(value: dict) -> dict:
    return {key: val for key, val in value.items() if key not in SYSTEM_FIELDS}


def to_document(entity: dict) -> dict:
    """Store the entity id as the mongo document `_id`."""

    doc = {"_id": entity["id"]}
    doc.update({key: val for key, val in entity.items() if key != "id"})
    return doc


def from_document(doc: dict) -> dict:
    entity = {"id": doc["_id"]}
    entity.update(
        {key: val for key, val in doc.items() if key not in ("_id", VERSION_FIELD)}
    )
    return entity
