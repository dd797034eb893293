from dataclasses import dataclass
from enum import Enum
from typing import Any

import pymongo

from crudrepo.utils import errors

# comparison operators accepted in a Query, and their mongo counterparts
OPERATIONS = {
    "<": "$lt",
    "<=": "$lte",
    "==": "$eq",
    "!=": "$ne",
    ">=": "$gte",
    ">": "$gt",
    "in": "$in",
    "not-in": "$nin",
    "array-contains": "$all",
    "array-contains-any": "$in",
}


def to_mongo_field(field: str) -> str:
    """Entities expose their document `_id` as `id`."""
    return "_id" if field == "id" else field


def get_path(doc: dict, path: str) -> Any:
    """Resolve a dotted field path inside a raw document."""

    value = doc
    for key in path.split("."):
        if not isinstance(value, dict):
            return None
        value = value.get(key)

    return value


class SortOrder(Enum):
    ASC = "asc"
    DESC = "desc"

    @property
    def direction(self) -> int:
        return pymongo.ASCENDING if self is SortOrder.ASC else pymongo.DESCENDING


@dataclass(frozen=True)
class Query:
    field: str
    operation: str
    value: Any

    def to_filter(self) -> dict:
        if self.operation not in OPERATIONS:
            raise errors.CrudRepoError(
                errors.CrudRepoErrorMsg.UNSUPPORTED_OPERATION, self.operation
            )

        field = to_mongo_field(self.field)
        value = [self.value] if self.operation == "array-contains" else self.value
        condition = {OPERATIONS[self.operation]: value}

        # inequality never matches documents missing the field
        if self.operation in ("!=", "not-in"):
            condition["$exists"] = True

        return {field: condition}


@dataclass(frozen=True)
class Sort:
    field: str
    order: SortOrder = SortOrder.ASC


@dataclass(frozen=True)
class QueryDescriptor:
    """Filter predicates and sort keys composed into a mongo query.

    Predicates are ANDed in the order given. Sort keys are applied in the order
    given, the first one being the primary key. The composed sort always ends on
    `_id` so that a page boundary can be resumed without skipping or repeating
    entities sharing the same sort values.

    :param queries: Predicates, as Query objects or (field, operation, value) tuples.
    :type queries: tuple
    :param sort: Sort keys, as Sort objects or (field, order) tuples.
    :type sort: tuple
    """

    queries: tuple = ()
    sort: tuple = ()

    def __post_init__(self):
        queries = tuple(q if isinstance(q, Query) else Query(*q) for q in self.queries)
        sort = tuple(
            s if isinstance(s, Sort) else Sort(s[0], SortOrder(s[1])) for s in self.sort
        )
        object.__setattr__(self, "queries", queries)
        object.__setattr__(self, "sort", sort)

    def sort_keys(self) -> list:
        """List (mongo field, SortOrder) pairs, tiebreak included."""

        keys = []
        for sort in self.sort:
            field = to_mongo_field(sort.field)
            if field not in [key[0] for key in keys]:
                keys.append((field, sort.order))

        if "_id" not in [key[0] for key in keys]:
            order = keys[-1][1] if keys else SortOrder.ASC
            keys.append(("_id", order))

        return keys

    def to_sort(self) -> list:
        return [(field, order.direction) for field, order in self.sort_keys()]

    def to_filter(self, extra: dict = None) -> dict:
        """Compose the predicates into a single mongo filter.

        :param extra: Additional clause ANDed after the predicates, defaults to None.
        :type extra: dict, optional
        :return: Mongo filter document.
        :rtype: dict
        """

        clauses = [query.to_filter() for query in self.queries]

        # ordering on a field leaves out documents lacking that field
        for field, _ in self.sort_keys():
            if field != "_id":
                clauses.append({field: {"$exists": True}})

        if extra:
            clauses.append(extra)

        if not clauses:
            return {}
        if len(clauses) == 1:
            return clauses[0]
        return {"$and": clauses}

    def position_filter(self, cursor_doc: dict, inclusive: bool = False) -> dict:
        """Select documents positioned after a cursor document in the sort order.

        For keys k1..kn the clause reads: k1 after v1, or k1 == v1 and k2 after
        v2, and so on down to the `_id` tiebreak. Values are compared with
        aggregation operators, which order across BSON types the same way the
        sort does, so null and mixed-type sort values are not skipped.

        :param cursor_doc: Raw document the page should start after.
        :type cursor_doc: dict
        :param inclusive: Also select the cursor document itself, defaults to False.
        :type inclusive: bool, optional
        """

        keys = self.sort_keys()
        alternatives = []
        for i, (field, order) in enumerate(keys):
            conditions = [
                {"$eq": [f"${prev}", {"$literal": get_path(cursor_doc, prev)}]}
                for prev, _ in keys[:i]
            ]
            op = "$gt" if order is SortOrder.ASC else "$lt"
            if inclusive and i == len(keys) - 1:
                op += "e"
            conditions.append(
                {op: [f"${field}", {"$literal": get_path(cursor_doc, field)}]}
            )
            expression = conditions[0] if len(conditions) == 1 else {"$and": conditions}
            alternatives.append({"$expr": expression})

        return {"$or": alternatives}
