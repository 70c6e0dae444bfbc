# connect_db.py - scoped MongoDB connection for the bookstore
import logging
import os
from contextlib import contextmanager
from dataclasses import dataclass, replace
from typing import Iterator, Optional

from dotenv import load_dotenv
from pymongo import MongoClient
from pymongo.database import Database
from pymongo.errors import ConnectionFailure

from bookstore_mongodb.errors import StoreUnavailableError

load_dotenv()

logger = logging.getLogger(__name__)

DEFAULT_URI = "mongodb://localhost:27017"
DEFAULT_DB_NAME = "plp_bookstore"
DEFAULT_COLLECTION_NAME = "books"


def _env_flag(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class Settings:
    mongo_uri: str = DEFAULT_URI
    db_name: str = DEFAULT_DB_NAME
    collection_name: str = DEFAULT_COLLECTION_NAME
    timeout_ms: int = 5000
    tls: bool = False
    tls_allow_invalid: bool = False


def load_settings(**overrides) -> Settings:
    """Read connection settings from the environment (and any .env file).

    Keyword arguments that are not None take precedence over the environment.
    """
    settings = Settings(
        mongo_uri=os.getenv("MONGO_URI", DEFAULT_URI),
        db_name=os.getenv("DB_NAME", DEFAULT_DB_NAME),
        collection_name=os.getenv("COLLECTION_NAME", DEFAULT_COLLECTION_NAME),
        timeout_ms=int(os.getenv("MONGO_TIMEOUT_MS", "5000")),
        tls=_env_flag("MONGO_TLS"),
        tls_allow_invalid=_env_flag("MONGO_TLS_ALLOW_INVALID"),
    )
    overrides = {k: v for k, v in overrides.items() if v is not None}
    return replace(settings, **overrides) if overrides else settings


def get_client(settings: Settings) -> MongoClient:
    kwargs = {"serverSelectionTimeoutMS": settings.timeout_ms}
    if settings.tls:
        kwargs["tls"] = True
        # only for self-signed development clusters
        kwargs["tlsAllowInvalidCertificates"] = settings.tls_allow_invalid
    return MongoClient(settings.mongo_uri, **kwargs)


@contextmanager
def connect(settings: Optional[Settings] = None) -> Iterator[Database]:
    """Yield the bookstore database and close the client on exit.

    The server is pinged first so an unreachable store fails here with
    StoreUnavailableError instead of on the first query.
    """
    settings = settings or load_settings()
    client = get_client(settings)
    try:
        try:
            client.admin.command("ping")
        except ConnectionFailure as e:
            logger.error("Failed to connect to MongoDB at %s: %s", settings.mongo_uri, e)
            raise StoreUnavailableError(f"MongoDB unreachable: {e}") from e
        logger.info("Connected to MongoDB database: %s", settings.db_name)
        yield client[settings.db_name]
    finally:
        client.close()
        logger.debug("MongoDB client closed")
