"""Tests for the document store in core/documents.py."""

from core.documents import matches


class TestMatches:
    def test_equality(self) -> None:
        assert matches({"status": "Open"}, {"status": "Open"})
        assert not matches({"status": "Open"}, {"status": "Fixed"})

    def test_list_field_contains_scalar(self) -> None:
        assert matches({"team_ids": ["T1", "T2"]}, {"team_ids": "T2"})
        assert not matches({"team_ids": ["T1"]}, {"team_ids": "T3"})

    def test_set_means_in(self) -> None:
        assert matches({"severity": "High"}, {"severity": {"High", "Critical"}})
        assert not matches({"severity": "Low"}, {"severity": frozenset({"High"})})

    def test_empty_filter_matches_everything(self) -> None:
        assert matches({"a": 1}, None)
        assert matches({"a": 1}, {})


class TestCollection:
    def test_insert_and_find_one(self, documents) -> None:
        col = documents.collection("things")
        doc_id = col.insert_one({"name": "alpha"})
        assert col.find_one({"id": doc_id}) == {"id": doc_id, "name": "alpha"}

    def test_collections_are_isolated(self, documents) -> None:
        documents.collection("a").insert_one({"name": "x"})
        assert documents.collection("b").count() == 0

    def test_find_sort_skip_limit(self, documents) -> None:
        col = documents.collection("things")
        for n in (3, 1, 2):
            col.insert_one({"n": n})
        col.insert_one({"n": None})
        assert [d["n"] for d in col.find(sort=[("n", 1)])] == [1, 2, 3, None]
        assert [d["n"] for d in col.find(sort=[("n", -1)])] == [3, 2, 1, None]
        assert [d["n"] for d in col.find(sort=[("n", 1)], skip=1, limit=2)] == [2, 3]

    def test_predicate_filter(self, documents) -> None:
        col = documents.collection("things")
        col.insert_one({"title": "SQL injection"})
        col.insert_one({"title": "XSS"})
        found = col.find(predicate=lambda d: "sql" in d["title"].lower())
        assert [d["title"] for d in found] == ["SQL injection"]
        assert col.count(predicate=lambda d: True) == 2

    def test_find_one_and_update_merges(self, documents) -> None:
        col = documents.collection("things")
        doc_id = col.insert_one({"name": "alpha", "n": 1})
        updated = col.find_one_and_update({"id": doc_id}, {"n": 2})
        assert updated == {"id": doc_id, "name": "alpha", "n": 2}
        assert col.find_one({"id": doc_id})["n"] == 2

    def test_find_one_and_update_without_match(self, documents) -> None:
        col = documents.collection("things")
        assert col.find_one_and_update({"id": "missing"}, {"n": 1}) is None
        assert col.count() == 0

    def test_upsert_seeds_from_filter(self, documents) -> None:
        col = documents.collection("settings")
        doc = col.find_one_and_update({"id": "singleton"}, {"flag": True}, upsert=True)
        assert doc == {"id": "singleton", "flag": True}
        col.find_one_and_update({"id": "singleton"}, {"flag": False}, upsert=True)
        assert col.count() == 1
        assert col.find_one({"id": "singleton"})["flag"] is False

    def test_delete_one_and_many(self, documents) -> None:
        col = documents.collection("things")
        keep = col.insert_one({"kind": "keep"})
        col.insert_one({"kind": "drop"})
        col.insert_one({"kind": "drop"})
        assert col.delete_many({"kind": "drop"}) == 2
        assert col.delete_one({"id": keep}) is True
        assert col.delete_one({"id": keep}) is False
        assert col.count() == 0

    def test_delete_many_with_predicate(self, documents) -> None:
        col = documents.collection("things")
        col.insert_one({"kind": "a", "n": 1})
        col.insert_one({"kind": "a", "n": 5})
        col.insert_one({"kind": "b", "n": 9})
        assert col.delete_many({"kind": "a"}, predicate=lambda d: d["n"] > 2) == 1
        assert sorted(d["n"] for d in col.find()) == [1, 9]


class TestScalarFieldFilters:
    def test_scalar_field_lookup(self, documents) -> None:
        col = documents.collection("users", {"email", "role"})
        col.insert_one({"email": "a@example.com", "role": "Dev"})
        target = col.insert_one({"email": "b@example.com", "role": "Admin"})
        assert col.find_one({"email": "b@example.com"})["id"] == target
        assert col.find_one({"email": "missing@example.com"}) is None

    def test_scalar_field_set_filter(self, documents) -> None:
        col = documents.collection("vulns", {"severity"})
        for severity in ("Low", "High", "Critical"):
            col.insert_one({"severity": severity})
        assert col.count({"severity": {"High", "Critical"}}) == 2
        assert col.count({"severity": set()}) == 0

    def test_list_field_still_matches_membership(self, documents) -> None:
        col = documents.collection("users", {"email"})
        col.insert_one({"email": "a@example.com", "team_ids": ["T1", "T2"]})
        col.insert_one({"email": "b@example.com", "team_ids": ["T3"]})
        found = col.find({"team_ids": "T2", "email": "a@example.com"})
        assert [d["email"] for d in found] == ["a@example.com"]

    def test_non_string_values_fall_back_to_python(self, documents) -> None:
        col = documents.collection("reports", {"report_type"})
        col.insert_one({"report_type": "initial", "year": 2024, "parsed": False})
        col.insert_one({"report_type": "initial", "year": 2023, "parsed": True})
        assert col.count({"report_type": "initial", "year": 2024, "parsed": False}) == 1


class TestConcurrentUpsert:
    def test_losing_insert_merges_into_winner(self, file_documents, race) -> None:
        col = file_documents.collection("settings")
        results, errors = race(
            1,
            lambda: col.find_one_and_update({"id": "singleton"}, {"flag": True}, upsert=True),
            lambda: col.find_one_and_update({"id": "singleton"}, {"flag": False}, upsert=True),
        )
        assert errors == []
        assert len(results) == 2
        assert col.count() == 1
        assert col.find_one({"id": "singleton"}) in results


def test_ping(documents) -> None:
    assert documents.ping() is True
