from unittest.mock import MagicMock

import pytest
from pymongo.errors import OperationFailure, ServerSelectionTimeoutError

from bookstore_mongodb.errors import NotFoundError, StoreUnavailableError, ValidationError
from bookstore_mongodb.queries import (
    BookQueries,
    Comparator,
    Condition,
    average_price_by_genre,
    books_by_decade,
    group_stage,
    top_authors,
)


def _titles(docs):
    return sorted(d["title"] for d in docs)


def test_scenario_update_then_delete(queries):
    queries.update_one_field({"title": "1984"}, "price", 12.49)
    (book,) = queries.find_by_field({"title": "1984"})
    assert book["price"] == 12.49

    assert queries.delete_one({"title": "Animal Farm"}) == 1
    assert queries.count() == 2


def test_find_by_field_equality(queries):
    assert _titles(queries.find_by_field("author", "George Orwell")) == ["1984", "Animal Farm"]
    assert _titles(queries.find_by_field("genre", "Sci-Fi")) == ["Dune"]


def test_find_by_field_range(queries):
    after_1946 = queries.find_by_field("published_year", Condition(op=Comparator.GT, value=1946))
    assert _titles(after_1946) == ["1984", "Dune"]
    assert _titles(queries.find_by_field("price", {"$lte": 10})) == ["1984", "Animal Farm"]


def test_find_by_field_rejects_unknown_field(queries):
    with pytest.raises(ValidationError):
        queries.find_by_field("isbn", "123")


@pytest.mark.parametrize(
    "criteria, predicate",
    [
        ({"genre": "Fiction"}, lambda b: b["genre"] == "Fiction"),
        ({"published_year": {"$gt": 1950}}, lambda b: b["published_year"] > 1950),
        ({"in_stock": True, "published_year": {"$gt": 1940}},
         lambda b: b["in_stock"] and b["published_year"] > 1940),
        ({"author": {"$in": ["J.R.R. Tolkien", "Jane Austen"]}},
         lambda b: b["author"] in ("J.R.R. Tolkien", "Jane Austen")),
        ({"price": {"$gte": 9.99, "$lt": 12}}, lambda b: 9.99 <= b["price"] < 12),
    ],
)
def test_find_matches_exactly_the_filtered_books(catalogue, criteria, predicate):
    from bookstore_mongodb.create_collections import SAMPLE_BOOKS

    expected = sorted(b["title"] for b in SAMPLE_BOOKS if predicate(b))
    assert _titles(catalogue.find(criteria)) == expected


def test_update_missing_book_raises_not_found(queries):
    with pytest.raises(NotFoundError):
        queries.update_one_field({"title": "Missing"}, "price", 1.0)


def test_update_rejects_invalid_value(queries):
    with pytest.raises(ValidationError):
        queries.update_one_field({"title": "1984"}, "price", -3)
    with pytest.raises(ValidationError):
        queries.update_one_field({"title": "1984"}, "in_stock", "yes")
    (book,) = queries.find({"title": "1984"})
    assert book["price"] == 10.0


def test_delete_one_removes_a_single_match(queries):
    assert queries.delete_one({"author": "George Orwell"}) == 1
    assert queries.count({"author": "George Orwell"}) == 1


def test_delete_one_without_match_is_a_noop(queries):
    assert queries.delete_one({"title": "Missing"}) == 0
    assert queries.count() == 3


def test_delete_one_must_exist(queries):
    with pytest.raises(NotFoundError):
        queries.delete_one({"title": "Missing"}, must_exist=True)


def test_project_returns_only_requested_fields(queries):
    docs = queries.project({"genre": "Fiction"}, ["title", "author", "price"])
    assert len(docs) == 2
    for doc in docs:
        assert set(doc) == {"title", "author", "price"}


def test_sort_by_price(queries):
    ascending = queries.sort_and_paginate({}, "price", "asc", page_size=10)
    descending = queries.sort_and_paginate({}, "price", -1, page_size=10)
    assert [d["title"] for d in ascending] == ["Animal Farm", "1984", "Dune"]
    assert [d["title"] for d in descending] == ["Dune", "1984", "Animal Farm"]


def test_pages_cover_the_sorted_result_once(catalogue):
    full = catalogue.sort_and_paginate({}, "price", "asc", page_size=100)
    pages = []
    page_index = 0
    while True:
        page = catalogue.sort_and_paginate({}, "price", "asc", page_size=5, page_index=page_index)
        if not page:
            break
        assert len(page) <= 5
        pages.extend(page)
        page_index += 1

    assert page_index == 3
    assert [d["_id"] for d in pages] == [d["_id"] for d in full]
    assert len({d["_id"] for d in pages}) == catalogue.count()
    prices = [d["price"] for d in pages]
    assert prices == sorted(prices)


@pytest.mark.parametrize("page_size, page_index", [(0, 0), (5, -1), (True, 0), (5, 1.5)])
def test_sort_and_paginate_rejects_bad_paging(queries, page_size, page_index):
    with pytest.raises(ValidationError):
        queries.sort_and_paginate({}, "price", page_size=page_size, page_index=page_index)


def test_average_price_by_genre(queries):
    averages = {row["_id"]: row["average_price"] for row in queries.aggregate(average_price_by_genre())}
    assert averages == {"Fiction": pytest.approx(9.0), "Sci-Fi": pytest.approx(15.0)}


def test_top_author(queries):
    assert queries.aggregate(top_authors()) == [{"_id": "George Orwell", "book_count": 2}]


def test_group_counts_sum_to_total(catalogue):
    rows = catalogue.aggregate([group_stage("genre", count={"$sum": 1})])
    assert sum(row["count"] for row in rows) == catalogue.count()


def test_aggregate_rejects_unknown_stage(queries):
    with pytest.raises(ValidationError):
        queries.aggregate([{"$out": "elsewhere"}])


def test_create_index_is_idempotent(queries):
    assert queries.create_index({"title": 1}) == "title_1"
    name = queries.create_index({"author": 1, "published_year": -1})
    assert name == "author_1_published_year_-1"
    assert queries.create_index([("author", 1), ("published_year", -1)]) == name

    indexes = queries.list_indexes()
    assert set(indexes) == {"_id_", "title_1", "author_1_published_year_-1"}


def test_insert_many_validates_documents(queries):
    with pytest.raises(ValidationError):
        queries.insert_many([{"title": "Bad", "price": "free"}])
    with pytest.raises(ValidationError):
        queries.insert_many([{"title": "Bad", "pages": 100}])
    assert queries.count() == 3


def _mock_collection():
    collection = MagicMock()
    collection.name = "books"
    return collection


def test_explain_find_filter():
    collection = _mock_collection()
    collection.database.command.return_value = {"executionStats": {"totalDocsExamined": 3}}

    report = BookQueries(collection).explain({"title": "1984"})

    assert report["executionStats"]["totalDocsExamined"] == 3
    collection.database.command.assert_called_once_with(
        "explain", {"find": "books", "filter": {"title": "1984"}}, verbosity="executionStats"
    )


def test_explain_pipeline():
    collection = _mock_collection()
    BookQueries(collection).explain(top_authors(), verbosity="queryPlanner")

    collection.database.command.assert_called_once_with(
        "explain",
        {"aggregate": "books", "pipeline": top_authors(), "cursor": {}},
        verbosity="queryPlanner",
    )


def test_connection_failure_becomes_store_unavailable():
    collection = _mock_collection()
    collection.find.side_effect = ServerSelectionTimeoutError("no servers")

    with pytest.raises(StoreUnavailableError) as excinfo:
        BookQueries(collection).find_by_field("genre", "Fiction")
    assert isinstance(excinfo.value.__cause__, ServerSelectionTimeoutError)


def test_other_store_errors_propagate_unchanged():
    collection = _mock_collection()
    collection.aggregate.side_effect = OperationFailure("bad pipeline")

    with pytest.raises(OperationFailure):
        BookQueries(collection).aggregate([{"$limit": 1}])


def test_update_to_none_is_rejected_before_sending(queries):
    with pytest.raises(ValidationError):
        queries.update_one_field({"title": "1984"}, "price", None)
    (book,) = queries.find({"title": "1984"})
    assert book["price"] == 10.0


def test_books_by_decade(queries):
    assert queries.aggregate(books_by_decade()) == [
        {"_id": "1940s", "count": 2},
        {"_id": "1960s", "count": 1},
    ]


def test_sort_returns_every_match(catalogue):
    ordered = catalogue.sort({"in_stock": True}, "published_year", "desc")
    years = [d["published_year"] for d in ordered]
    assert len(ordered) == catalogue.count({"in_stock": True})
    assert years == sorted(years, reverse=True)


def test_explain_accepts_any_iterable_of_stages():
    collection = _mock_collection()
    BookQueries(collection).explain(stage for stage in top_authors())

    collection.database.command.assert_called_once_with(
        "explain",
        {"aggregate": "books", "pipeline": top_authors(), "cursor": {}},
        verbosity="executionStats",
    )


def test_explain_without_filter():
    collection = _mock_collection()
    BookQueries(collection).explain(None)

    collection.database.command.assert_called_once_with(
        "explain", {"find": "books", "filter": {}}, verbosity="executionStats"
    )
