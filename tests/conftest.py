import mongomock
import pytest

from bookstore_mongodb.queries import BookQueries

SCENARIO_BOOKS = [
    {"title": "1984", "author": "George Orwell", "genre": "Fiction",
     "published_year": 1949, "price": 10.00, "in_stock": True},
    {"title": "Animal Farm", "author": "George Orwell", "genre": "Fiction",
     "published_year": 1945, "price": 8.00, "in_stock": True},
    {"title": "Dune", "author": "Frank Herbert", "genre": "Sci-Fi",
     "published_year": 1965, "price": 15.00, "in_stock": False},
]


@pytest.fixture
def db():
    return mongomock.MongoClient()["plp_bookstore"]


@pytest.fixture
def queries(db):
    q = BookQueries.from_database(db)
    q.insert_many(SCENARIO_BOOKS)
    return q


@pytest.fixture
def catalogue(db):
    from bookstore_mongodb.create_collections import SAMPLE_BOOKS

    q = BookQueries.from_database(db)
    q.insert_many(SAMPLE_BOOKS)
    return q
