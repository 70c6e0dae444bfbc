import logging

from pymongo.database import Database
from pymongo.errors import CollectionInvalid, OperationFailure

from bookstore_mongodb.connect_db import DEFAULT_COLLECTION_NAME, connect, load_settings
from bookstore_mongodb.queries import BookQueries
from bookstore_mongodb.schema import books_schema

logger = logging.getLogger(__name__)

SAMPLE_BOOKS = [
    {"title": "To Kill a Mockingbird", "author": "Harper Lee", "genre": "Fiction",
     "published_year": 1960, "price": 12.99, "in_stock": True},
    {"title": "1984", "author": "George Orwell", "genre": "Dystopian",
     "published_year": 1949, "price": 10.99, "in_stock": True},
    {"title": "The Great Gatsby", "author": "F. Scott Fitzgerald", "genre": "Fiction",
     "published_year": 1925, "price": 9.99, "in_stock": True},
    {"title": "Brave New World", "author": "Aldous Huxley", "genre": "Dystopian",
     "published_year": 1932, "price": 11.50, "in_stock": False},
    {"title": "The Hobbit", "author": "J.R.R. Tolkien", "genre": "Fantasy",
     "published_year": 1937, "price": 14.99, "in_stock": True},
    {"title": "The Catcher in the Rye", "author": "J.D. Salinger", "genre": "Fiction",
     "published_year": 1951, "price": 8.99, "in_stock": True},
    {"title": "Pride and Prejudice", "author": "Jane Austen", "genre": "Romance",
     "published_year": 1813, "price": 7.99, "in_stock": True},
    {"title": "The Lord of the Rings", "author": "J.R.R. Tolkien", "genre": "Fantasy",
     "published_year": 1954, "price": 19.99, "in_stock": True},
    {"title": "Animal Farm", "author": "George Orwell", "genre": "Political Satire",
     "published_year": 1945, "price": 8.50, "in_stock": False},
    {"title": "The Alchemist", "author": "Paulo Coelho", "genre": "Fiction",
     "published_year": 1988, "price": 10.99, "in_stock": True},
    {"title": "Moby Dick", "author": "Herman Melville", "genre": "Adventure",
     "published_year": 1851, "price": 12.50, "in_stock": False},
    {"title": "Wuthering Heights", "author": "Emily Brontë", "genre": "Gothic Fiction",
     "published_year": 1847, "price": 9.99, "in_stock": True},
]


def create_books_collection(db: Database, name: str = DEFAULT_COLLECTION_NAME) -> None:
    try:
        db.create_collection(name)
        logger.info("Created collection '%s'", name)
    except CollectionInvalid:
        logger.info("Collection '%s' already exists", name)

    try:
        db.command("collMod", name, validator={"$jsonSchema": books_schema})
        logger.info("Applied validator to '%s'", name)
    except OperationFailure as e:
        logger.warning("Failed to apply validator to '%s': %s", name, e)


def seed_books(queries: BookQueries, books=SAMPLE_BOOKS) -> int:
    """Insert ``books`` into an empty collection. Returns the number inserted."""
    existing = queries.count()
    if existing:
        logger.info("Collection already holds %d books; skipping seed", existing)
        return 0
    return len(queries.insert_many(books))


def create_collections():
    settings = load_settings()
    with connect(settings) as db:
        create_books_collection(db, settings.collection_name)
        queries = BookQueries.from_database(db, settings.collection_name)
        inserted = seed_books(queries)
        print(f"✅ '{settings.collection_name}' ready in '{settings.db_name}' ({inserted} books inserted)")
        print(f"   Collections: {db.list_collection_names()}")


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    create_collections()
