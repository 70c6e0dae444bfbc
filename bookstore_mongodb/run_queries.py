# run_queries.py - walk through the bookstore exercises against a live server
import logging
from pprint import pprint

from bookstore_mongodb.connect_db import connect, load_settings
from bookstore_mongodb.errors import NotFoundError
from bookstore_mongodb.queries import (
    BookQueries,
    Comparator,
    Condition,
    average_price_by_genre,
    books_by_decade,
    top_authors,
)


def _show(label, docs):
    print(f"\n{label} ({len(docs)})")
    for doc in docs:
        doc.pop("_id", None)
        print(f"   {doc}")


def basic_crud(queries: BookQueries):
    print("\n== Basic CRUD ==")
    _show("Fiction books", queries.find_by_field("genre", "Fiction"))
    _show("Published after 2000", queries.find_by_field("published_year", Condition(op=Comparator.GT, value=2000)))
    _show("By George Orwell", queries.find_by_field("author", "George Orwell"))

    try:
        queries.update_one_field({"title": "1984"}, "price", 12.49)
        print("\n Updated price of '1984' to 12.49")
    except NotFoundError as e:
        print(f"\n Update skipped: {e}")

    deleted = queries.delete_one({"title": "Animal Farm"})
    print(f" Deleted {deleted} book(s) titled 'Animal Farm'")


def advanced_queries(queries: BookQueries):
    print("\n== Advanced queries ==")
    _show("In stock, published after 2010", queries.find({"in_stock": True, "published_year": {"$gt": 2010}}))
    _show("Title, author and price", queries.project({}, ["title", "author", "price"]))
    _show("Price ascending", queries.sort({}, "price", "asc"))
    _show("Price descending", queries.sort({}, "price", "desc"))
    _show("Page 1 (5 per page)", queries.sort_and_paginate({}, "_id", page_size=5, page_index=0))
    _show("Page 2 (5 per page)", queries.sort_and_paginate({}, "_id", page_size=5, page_index=1))


def aggregations(queries: BookQueries):
    print("\n== Aggregation pipelines ==")
    print("\nAverage price by genre")
    for row in queries.aggregate(average_price_by_genre()):
        print(f"   {row['_id']}: {row['average_price']:.2f}")
    print("\nAuthor with the most books")
    for row in queries.aggregate(top_authors()):
        print(f"   {row['_id']}: {row['book_count']}")
    print("\nBooks per decade")
    for row in queries.aggregate(books_by_decade()):
        print(f"   {row['_id']}: {row['count']}")


def indexing(queries: BookQueries):
    print("\n== Indexing ==")
    before = queries.explain({"title": "1984"})
    print(" title lookup before indexing:")
    pprint(before.get("executionStats", before), depth=1)

    print(f" Created index {queries.create_index({'title': 1})}")
    print(f" Created index {queries.create_index({'author': 1, 'published_year': -1})}")

    after = queries.explain({"author": "George Orwell", "published_year": 1949})
    print(" author/year lookup with compound index:")
    pprint(after.get("executionStats", after), depth=1)


def run_queries():
    settings = load_settings()
    with connect(settings) as db:
        queries = BookQueries.from_database(db, settings.collection_name)
        basic_crud(queries)
        advanced_queries(queries)
        aggregations(queries)
        indexing(queries)


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    run_queries()
