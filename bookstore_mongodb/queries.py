"""Query builder and runner for the books collection.

The ``build_*`` and ``*_stage`` helpers assemble filter, update, projection,
sort, index and aggregation payloads and reject unknown fields or operators
before anything reaches the server. :class:`BookQueries` submits them to a
pymongo collection and returns what the server returns.
"""
import functools
import logging
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

from pydantic import BaseModel
from pymongo import ASCENDING, DESCENDING
from pymongo.collection import Collection
from pymongo.database import Database
from pymongo.errors import ConnectionFailure
from pymongo.results import UpdateResult

from bookstore_mongodb.connect_db import DEFAULT_COLLECTION_NAME
from bookstore_mongodb.errors import NotFoundError, StoreUnavailableError, ValidationError
from bookstore_mongodb.schema import BOOK_FIELDS, Book, validate_book_document

logger = logging.getLogger(__name__)

QUERYABLE_FIELDS = BOOK_FIELDS | {"_id"}
PIPELINE_STAGES = frozenset({"$group", "$sort", "$limit", "$project", "$match", "$skip"})

_MISSING = object()


class Comparator(str, Enum):
    EQ = "$eq"
    NE = "$ne"
    GT = "$gt"
    GTE = "$gte"
    LT = "$lt"
    LTE = "$lte"
    IN = "$in"
    NIN = "$nin"


class Condition(BaseModel):
    """A comparator-tagged match criterion, e.g. ``published_year > 2000``."""

    op: Comparator
    value: Any

    def to_query(self) -> Dict[str, Any]:
        return {self.op.value: _operand(self.op, self.value)}


Direction = Union[int, str]
IndexSpec = Union[str, Mapping[str, Direction], Sequence[Tuple[str, Direction]]]


# ======== Builders ========
def _check_field(field: Any) -> str:
    if not isinstance(field, str) or field not in QUERYABLE_FIELDS:
        raise ValidationError(f"Unknown book field: {field!r}")
    return field


def _operand(op: Comparator, value: Any) -> Any:
    if op in (Comparator.IN, Comparator.NIN):
        if isinstance(value, (str, bytes)) or not isinstance(value, Iterable):
            raise ValidationError(f"{op.value} expects a list of values, got {value!r}")
        return list(value)
    return value


def _criterion(value: Any) -> Any:
    if isinstance(value, Condition):
        return value.to_query()
    if isinstance(value, Mapping):
        query = {}
        for op, operand in value.items():
            try:
                comparator = Comparator(op)
            except ValueError:
                raise ValidationError(f"Unsupported comparison operator: {op!r}") from None
            query[comparator.value] = _operand(comparator, operand)
        if not query:
            raise ValidationError("Empty comparison in filter")
        return query
    return value


def build_filter(criteria: Optional[Mapping[str, Any]] = None) -> Dict[str, Any]:
    """Turn ``{field: value | Condition | {"$op": value}}`` into a find filter."""
    if criteria is None:
        return {}
    if not isinstance(criteria, Mapping):
        raise ValidationError(f"Filter must be a mapping, got {type(criteria).__name__}")
    return {_check_field(field): _criterion(value) for field, value in criteria.items()}


def build_update(field: str, value: Any) -> Dict[str, Any]:
    if field == "_id":
        raise ValidationError("The _id field cannot be updated")
    _check_field(field)
    if value is None:
        raise ValidationError(f"Cannot set {field} to None")
    doc = validate_book_document({field: value})
    return {"$set": {field: doc[field]}}


def build_projection(fields: Iterable[str]) -> Dict[str, int]:
    if isinstance(fields, str):
        fields = [fields]
    projection = {"_id": 0}
    for field in fields:
        projection[_check_field(field)] = 1
    if len(projection) == 1:
        raise ValidationError("Projection needs at least one field")
    return projection


def normalize_direction(direction: Direction) -> int:
    if isinstance(direction, str):
        key = direction.strip().lower()
        if key in {"asc", "ascending"}:
            return ASCENDING
        if key in {"desc", "descending"}:
            return DESCENDING
    elif not isinstance(direction, bool) and direction in (ASCENDING, DESCENDING):
        return direction
    raise ValidationError(f"Invalid sort direction: {direction!r}")


def build_sort(field: str, direction: Direction = ASCENDING) -> List[Tuple[str, int]]:
    """Sort keys for ``field``; ties are broken on ``_id`` so pages never overlap."""
    keys = [(_check_field(field), normalize_direction(direction))]
    if field != "_id":
        keys.append(("_id", ASCENDING))
    return keys


def build_index_keys(field_spec: IndexSpec) -> List[Tuple[str, int]]:
    if isinstance(field_spec, str):
        pairs = [(field_spec, ASCENDING)]
    elif isinstance(field_spec, Mapping):
        pairs = list(field_spec.items())
    else:
        pairs = list(field_spec)
    if not pairs:
        raise ValidationError("Index specification needs at least one field")
    return [(_check_field(field), normalize_direction(direction)) for field, direction in pairs]


# ======== Aggregation stages ========
def group_stage(key: Optional[str], **accumulators: Mapping[str, Any]) -> Dict[str, Any]:
    """``$group`` on ``key`` (a field name, or None for a single group)."""
    group_id = None if key is None else f"${key.lstrip('$')}"
    return {"$group": {"_id": group_id, **accumulators}}


def sort_stage(keys: Mapping[str, Direction]) -> Dict[str, Any]:
    if not keys:
        raise ValidationError("$sort needs at least one key")
    return {"$sort": {name: normalize_direction(d) for name, d in keys.items()}}


def limit_stage(n: int) -> Dict[str, int]:
    if isinstance(n, bool) or not isinstance(n, int) or n < 1:
        raise ValidationError(f"$limit must be a positive integer, got {n!r}")
    return {"$limit": n}


def skip_stage(n: int) -> Dict[str, int]:
    if isinstance(n, bool) or not isinstance(n, int) or n < 0:
        raise ValidationError(f"$skip must be a non-negative integer, got {n!r}")
    return {"$skip": n}


def project_stage(spec: Mapping[str, Any]) -> Dict[str, Any]:
    if not spec:
        raise ValidationError("$project needs at least one field")
    return {"$project": dict(spec)}


def match_stage(criteria: Mapping[str, Any]) -> Dict[str, Any]:
    return {"$match": build_filter(criteria)}


def validate_pipeline(stages: Iterable[Mapping[str, Any]]) -> List[Dict[str, Any]]:
    pipeline = []
    for position, stage in enumerate(stages):
        if not isinstance(stage, Mapping) or len(stage) != 1:
            raise ValidationError(f"Stage {position} must be a mapping with exactly one operator")
        (name,) = stage.keys()
        if name not in PIPELINE_STAGES:
            raise ValidationError(f"Unsupported pipeline stage {name!r} at position {position}")
        pipeline.append(dict(stage))
    return pipeline


def average_price_by_genre() -> List[Dict[str, Any]]:
    return [group_stage("genre", average_price={"$avg": "$price"})]


def top_authors(limit: int = 1) -> List[Dict[str, Any]]:
    """Authors ranked by number of books, most prolific first."""
    return [
        group_stage("author", book_count={"$sum": 1}),
        sort_stage({"book_count": DESCENDING}),
        limit_stage(limit),
    ]


def books_by_decade() -> List[Dict[str, Any]]:
    # 1949 -> "194" + "0s" -> "1940s"
    decade = {"$concat": [{"$substr": [{"$toString": "$published_year"}, 0, 3]}, "0s"]}
    return [
        project_stage({"decade": decade}),
        group_stage("decade", count={"$sum": 1}),
        sort_stage({"_id": ASCENDING}),
    ]


# ======== Runner ========
def _store_call(func):
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except ConnectionFailure as e:
            logger.error("MongoDB unavailable during %s: %s", func.__name__, e)
            raise StoreUnavailableError(f"MongoDB unavailable: {e}") from e

    return wrapper


class BookQueries:
    """Runs book queries against one pymongo collection.

    Each method is a single request/response round trip; results from
    cursors are materialised into lists before returning.
    """

    def __init__(self, collection: Collection):
        self.collection = collection

    @classmethod
    def from_database(cls, db: Database, collection_name: str = DEFAULT_COLLECTION_NAME) -> "BookQueries":
        return cls(db[collection_name])

    @_store_call
    def find(self, criteria: Optional[Mapping[str, Any]] = None) -> List[dict]:
        query = build_filter(criteria)
        logger.debug("find %s", query)
        return list(self.collection.find(query))

    def find_by_field(self, field, value_or_range: Any = _MISSING) -> List[dict]:
        """Books whose ``field`` matches ``value_or_range``.

        ``value_or_range`` is a plain value for equality, or a Condition /
        ``{"$gt": ...}`` mapping for a range. A filter mapping may be passed
        as ``field`` on its own.
        """
        if value_or_range is _MISSING:
            if not isinstance(field, Mapping):
                raise ValidationError("find_by_field needs a value or a filter mapping")
            return self.find(field)
        return self.find({_check_field(field): value_or_range})

    @_store_call
    def update_one_field(self, criteria: Mapping[str, Any], field: str, new_value: Any) -> UpdateResult:
        query = build_filter(criteria)
        update = build_update(field, new_value)
        result = self.collection.update_one(query, update)
        if result.matched_count == 0:
            raise NotFoundError(f"No book matches {query}")
        logger.info("Updated %s on book matching %s", field, query)
        return result

    @_store_call
    def delete_one(self, criteria: Mapping[str, Any], must_exist: bool = False) -> int:
        """Delete at most one matching book and return how many were removed.

        A filter that matches nothing is a no-op unless ``must_exist`` is set.
        """
        query = build_filter(criteria)
        result = self.collection.delete_one(query)
        if result.deleted_count == 0:
            if must_exist:
                raise NotFoundError(f"No book matches {query}")
            logger.info("delete_one matched no book for %s", query)
        return result.deleted_count

    @_store_call
    def project(self, criteria: Optional[Mapping[str, Any]], included_fields: Iterable[str]) -> List[dict]:
        return list(self.collection.find(build_filter(criteria), build_projection(included_fields)))

    @_store_call
    def sort(
        self,
        criteria: Optional[Mapping[str, Any]],
        sort_field: str,
        direction: Direction = ASCENDING,
    ) -> List[dict]:
        """Every matching book ordered by ``sort_field``, without paging."""
        return list(self.collection.find(build_filter(criteria)).sort(build_sort(sort_field, direction)))

    @_store_call
    def sort_and_paginate(
        self,
        criteria: Optional[Mapping[str, Any]],
        sort_field: str,
        direction: Direction = ASCENDING,
        page_size: int = 5,
        page_index: int = 0,
    ) -> List[dict]:
        if isinstance(page_size, bool) or not isinstance(page_size, int) or page_size < 1:
            raise ValidationError(f"page_size must be a positive integer, got {page_size!r}")
        if isinstance(page_index, bool) or not isinstance(page_index, int) or page_index < 0:
            raise ValidationError(f"page_index must be a non-negative integer, got {page_index!r}")
        cursor = (
            self.collection.find(build_filter(criteria))
            .sort(build_sort(sort_field, direction))
            .skip(page_size * page_index)
            .limit(page_size)
        )
        return list(cursor)

    @_store_call
    def aggregate(self, pipeline_stages: Iterable[Mapping[str, Any]]) -> List[dict]:
        pipeline = validate_pipeline(pipeline_stages)
        logger.debug("aggregate %s", pipeline)
        return list(self.collection.aggregate(pipeline))

    @_store_call
    def create_index(self, field_spec: IndexSpec, **options) -> str:
        """Create an index and return its name; an identical index is left as is."""
        name = self.collection.create_index(build_index_keys(field_spec), **options)
        logger.info("Index %s ready on %s", name, self.collection.name)
        return name

    @_store_call
    def list_indexes(self) -> Dict[str, Any]:
        return self.collection.index_information()

    @_store_call
    def explain(self, filter_or_pipeline, verbosity: str = "executionStats") -> Dict[str, Any]:
        """Server execution report for a find filter (mapping) or a pipeline.

        Anything other than a mapping or None is treated as an iterable of stages.
        """
        if filter_or_pipeline is not None and not isinstance(filter_or_pipeline, Mapping):
            command = {
                "aggregate": self.collection.name,
                "pipeline": validate_pipeline(filter_or_pipeline),
                "cursor": {},
            }
        else:
            command = {"find": self.collection.name, "filter": build_filter(filter_or_pipeline)}
        return self.collection.database.command("explain", command, verbosity=verbosity)

    @_store_call
    def count(self, criteria: Optional[Mapping[str, Any]] = None) -> int:
        return self.collection.count_documents(build_filter(criteria))

    @_store_call
    def insert_many(self, books: Iterable[Union[Book, Mapping[str, Any]]]) -> list:
        docs = [
            validate_book_document(book.to_document() if isinstance(book, Book) else book)
            for book in books
        ]
        if not docs:
            return []
        result = self.collection.insert_many(docs)
        logger.info("Inserted %d books into %s", len(result.inserted_ids), self.collection.name)
        return result.inserted_ids
