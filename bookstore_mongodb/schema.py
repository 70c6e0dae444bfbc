# schema.py
from typing import Any, Dict, Mapping, Optional

import jsonschema
import pydantic
from pydantic import BaseModel, ConfigDict, Field

from bookstore_mongodb.errors import ValidationError

books_schema = {
    "bsonType": "object",
    "properties": {
        "title": {"bsonType": "string"},
        "author": {"bsonType": "string"},
        "genre": {"bsonType": "string"},
        "published_year": {"bsonType": "int"},
        "price": {"bsonType": ["double", "int", "decimal"], "minimum": 0},
        "in_stock": {"bsonType": "bool"},
    },
}

BOOK_FIELDS = frozenset(books_schema["properties"])


class Book(BaseModel):
    """A book record. Every field is optional, as in the collection itself.

    ``price`` is a plain float. ``Decimal`` and ``bson.Decimal128`` values are
    rejected even though the collection validator would store them.
    """

    model_config = ConfigDict(extra="forbid", strict=True)

    title: Optional[str] = Field(default=None, min_length=1)
    author: Optional[str] = None
    genre: Optional[str] = None
    published_year: Optional[int] = None
    price: Optional[float] = Field(default=None, ge=0)
    in_stock: Optional[bool] = None

    def to_document(self) -> Dict[str, Any]:
        return self.model_dump(exclude_none=True)


_JSON_SCHEMA_CACHE: dict = {}

_BSON_TO_JSON_TYPES = {
    "string": "string",
    "int": "integer",
    "long": "integer",
    "double": "number",
    "decimal": "number",
    "bool": "boolean",
    "null": "null",
}


def bson_to_jsonschema(bson_schema: dict) -> dict:
    """Translate a MongoDB ``$jsonSchema`` validator into plain JSON Schema."""
    props = {}
    for key, prop in bson_schema.get("properties", {}).items():
        bson_type = prop.get("bsonType")
        types = bson_type if isinstance(bson_type, list) else [bson_type]
        json_types = []
        for t in types:
            json_type = _BSON_TO_JSON_TYPES.get(t, "string")
            if json_type not in json_types:
                json_types.append(json_type)
        # "number" already admits integers
        if "number" in json_types and "integer" in json_types:
            json_types.remove("integer")
        prop_schema: dict = {"type": json_types[0] if len(json_types) == 1 else json_types}
        if "minimum" in prop:
            prop_schema["minimum"] = prop["minimum"]
        props[key] = prop_schema

    json_schema = {"type": "object", "properties": props, "additionalProperties": False}
    if "required" in bson_schema:
        json_schema["required"] = bson_schema["required"]
    return json_schema


def books_json_schema() -> dict:
    if "books" not in _JSON_SCHEMA_CACHE:
        _JSON_SCHEMA_CACHE["books"] = bson_to_jsonschema(books_schema)
    return _JSON_SCHEMA_CACHE["books"]


def validate_book(data: Mapping[str, Any]) -> Book:
    """Build a Book from ``data``, raising ValidationError on bad fields or values."""
    try:
        return Book.model_validate(dict(data))
    except pydantic.ValidationError as e:
        raise ValidationError(f"Invalid book: {e}") from e


def validate_book_document(doc: Mapping[str, Any]) -> Dict[str, Any]:
    """Check a document against the Book model and the collection validator.

    ``_id`` is ignored. Returns the normalised document ready for insertion.
    """
    payload = {k: v for k, v in doc.items() if k != "_id"}
    book = validate_book(payload)
    normalised = book.to_document()
    try:
        jsonschema.validate(instance=normalised, schema=books_json_schema())
    except jsonschema.ValidationError as e:
        raise ValidationError(f"Schema validation error: {e.message}") from e
    if "_id" in doc:
        normalised["_id"] = doc["_id"]
    return normalised
