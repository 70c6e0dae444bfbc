"""bookstore_mongodb package initializer

Query builder and runner for the ``plp_bookstore.books`` MongoDB collection.
Open a connection with :func:`bookstore_mongodb.connect_db.connect` and wrap
the database in :class:`bookstore_mongodb.queries.BookQueries`.
"""

__all__ = [
    "connect_db",
    "create_collections",
    "errors",
    "queries",
    "schema",
]
