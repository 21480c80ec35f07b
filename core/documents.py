"""
core/documents.py -- Minimal document store over SQLAlchemy Core.

Every entity in the platform is a JSON document living in a named
collection. Repositories in auth/store.py and tracker/store.py talk to a
Collection through a Mongo-shaped interface (insert_one, find, find_one,
find_one_and_update, delete_one, ...) and never see SQL.

Storage: one `documents` table holding (seq, id, collection, body). `seq`
preserves insertion order for unsorted reads. `body` is a JSON column, so
callers must hand in JSON-safe values (repositories convert datetimes to
ISO strings in their mappers).

Filter semantics (always applied in Python after loading):
  {"status": "Open"}              equality
  {"team_ids": "T1"}              list-valued field contains the scalar
  {"severity": {"High", "Low"}}   set/frozenset value means "in"

String filters on `id` and on the collection's declared scalar fields are also
pushed into the SELECT as JSON path comparisons, so lookups such as a user
by email or a refresh token by value do not decode the whole collection.
List-valued fields are never declared scalar: a JSON path equality cannot
express "contains".

Each write runs inside a single engine.begin() transaction, which gives the
single-document atomicity the repositories rely on.

Usage:
    docs = DocumentStore()                                  # SQLite default
    docs = DocumentStore("postgresql://user:pw@host/db")    # PostgreSQL
    vulns = docs.collection("vulnerabilities", scalar_fields={"severity", "status"})
    vid = vulns.insert_one({"title": "XSS", "severity": "High"})
    vulns.find({"severity": {"High", "Critical"}}, sort=[("createdAt", -1)], limit=10)
    docs.close()

Layer rule: core/ is the kernel. No imports from api/, auth/, or tracker/.
"""

from __future__ import annotations

import uuid
from typing import Any, Callable, Iterable, Optional

from sqlalchemy import JSON, Column, Integer, MetaData, String, Table, create_engine, event, select, text
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.sql.elements import ColumnElement

from core.config import get_settings

Document = dict[str, Any]
Filter = dict[str, Any]
Predicate = Callable[[Document], bool]
SortSpec = Iterable[tuple[str, int]]

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_documents = Table(
    "documents",
    _metadata,
    Column("seq", Integer, primary_key=True, autoincrement=True),
    Column("id", String(64), nullable=False, unique=True),
    Column("collection", String(64), nullable=False, index=True),
    Column("body", JSON, nullable=False),
)


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode so readers are not blocked during writes."""
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


# ---------------------------------------------------------------------------
# Filtering and sorting
# ---------------------------------------------------------------------------


def _field_matches(actual: Any, expected: Any) -> bool:
    if isinstance(expected, (set, frozenset)):
        if isinstance(actual, list):
            return any(item in expected for item in actual)
        return actual in expected
    if isinstance(actual, list) and not isinstance(expected, list):
        return expected in actual
    return actual == expected


def matches(doc: Document, filter: Optional[Filter]) -> bool:
    """Return True if every key in filter matches the document."""
    if not filter:
        return True
    return all(_field_matches(doc.get(key), expected) for key, expected in filter.items())


def _sorted(docs: list[Document], sort: SortSpec) -> list[Document]:
    """Stable multi-key sort. Missing/None values always sort last."""
    for key, direction in reversed(list(sort)):
        present = [d for d in docs if d.get(key) is not None]
        missing = [d for d in docs if d.get(key) is None]
        present.sort(key=lambda d: d[key], reverse=direction < 0)
        docs = present + missing
    return docs


# ---------------------------------------------------------------------------
# Collection
# ---------------------------------------------------------------------------


class Collection:
    """A named set of JSON documents inside a DocumentStore.

    scalar_fields names the keys that always hold a single value in this
    collection; string filters on them are evaluated in SQL as well.
    """

    def __init__(self, engine: Engine, name: str, scalar_fields: Iterable[str] = ()) -> None:
        self._engine = engine
        self.name = name
        self.scalar_fields = frozenset(scalar_fields)

    # ------------------------------------------------------------------
    # Internal row access
    # ------------------------------------------------------------------

    def _criteria(self, filter: Optional[Filter]) -> list[ColumnElement]:
        criteria = [_documents.c.collection == self.name]
        for key, expected in (filter or {}).items():
            if key == "id":
                column = _documents.c.id
            elif key in self.scalar_fields:
                column = _documents.c.body[key].as_string()
            else:
                continue
            if isinstance(expected, str):
                criteria.append(column == expected)
            elif isinstance(expected, (set, frozenset)) and all(isinstance(v, str) for v in expected):
                criteria.append(column.in_(sorted(expected)))
        return criteria

    def _load(self, conn: Connection, filter: Optional[Filter]) -> list[Document]:
        stmt = select(_documents.c.body).where(*self._criteria(filter)).order_by(_documents.c.seq)
        docs = [row.body for row in conn.execute(stmt)]
        return [d for d in docs if matches(d, filter)]

    def _write(self, conn: Connection, doc: Document) -> None:
        conn.execute(
            _documents.update()
            .where(_documents.c.collection == self.name)
            .where(_documents.c.id == doc["id"])
            .values(body=doc)
        )

    def _insert(self, conn: Connection, doc: Document) -> Document:
        doc = dict(doc)
        doc["id"] = doc.get("id") or uuid.uuid4().hex
        conn.execute(_documents.insert().values(id=doc["id"], collection=self.name, body=doc))
        return doc

    # ------------------------------------------------------------------
    # Public interface
    # ------------------------------------------------------------------

    def insert_one(self, doc: Document) -> str:
        """Insert a document and return its id (generated when absent)."""
        with self._engine.begin() as conn:
            return self._insert(conn, doc)["id"]

    def find(
        self,
        filter: Optional[Filter] = None,
        *,
        sort: Optional[SortSpec] = None,
        skip: int = 0,
        limit: Optional[int] = None,
        predicate: Optional[Predicate] = None,
    ) -> list[Document]:
        """Return matching documents, optionally sorted and sliced.

        predicate is an extra Python-side filter for conditions the filter
        dict cannot express (free-text search, date comparisons).
        """
        with self._engine.connect() as conn:
            docs = self._load(conn, filter)
        if predicate is not None:
            docs = [d for d in docs if predicate(d)]
        if sort:
            docs = _sorted(docs, sort)
        end = None if limit is None else skip + limit
        return docs[skip:end]

    def count(self, filter: Optional[Filter] = None, *, predicate: Optional[Predicate] = None) -> int:
        return len(self.find(filter, predicate=predicate))

    def find_one(self, filter: Filter) -> Optional[Document]:
        with self._engine.connect() as conn:
            docs = self._load(conn, filter)
        return docs[0] if docs else None

    def find_one_and_update(self, filter: Filter, changes: Document, *, upsert: bool = False) -> Optional[Document]:
        """Shallow-merge changes into the first match and return the result.

        With upsert=True and no match, a new document is created from the
        scalar filter fields plus changes. If a concurrent writer inserts the
        same id first, the changes are merged into its document instead, so
        the last writer wins. Returns None when nothing matched and upsert
        is off.
        """
        try:
            with self._engine.begin() as conn:
                found = self._load(conn, filter)
                if found:
                    doc = {**found[0], **changes, "id": found[0]["id"]}
                    self._write(conn, doc)
                    return doc
                if not upsert:
                    return None
                seed = {k: v for k, v in filter.items() if not isinstance(v, (set, frozenset))}
                return self._insert(conn, {**seed, **changes})
        except IntegrityError:
            if not upsert:
                raise
            return self.find_one_and_update(filter, changes)

    def delete_one(self, filter: Filter) -> bool:
        with self._engine.begin() as conn:
            found = self._load(conn, filter)
            if not found:
                return False
            conn.execute(
                _documents.delete()
                .where(_documents.c.collection == self.name)
                .where(_documents.c.id == found[0]["id"])
            )
            return True

    def delete_many(self, filter: Optional[Filter] = None, *, predicate: Optional[Predicate] = None) -> int:
        with self._engine.begin() as conn:
            ids = [d["id"] for d in self._load(conn, filter) if predicate is None or predicate(d)]
            if ids:
                conn.execute(
                    _documents.delete().where(_documents.c.collection == self.name).where(_documents.c.id.in_(ids))
                )
            return len(ids)


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------


class DocumentStore:
    """Owns the engine; hands out Collection views by name."""

    def __init__(self, db_url: Optional[str] = None) -> None:
        db_url = db_url or get_settings().database_url
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            # FastAPI runs sync handlers in a thread pool.
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)

    def collection(self, name: str, scalar_fields: Iterable[str] = ()) -> Collection:
        return Collection(self.engine, name, scalar_fields)

    def ping(self) -> bool:
        """Run a trivial query. False when the database cannot be reached."""
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except SQLAlchemyError:
            return False
        return True

    def close(self) -> None:
        """Dispose the connection pool. Call once on application shutdown."""
        self.engine.dispose()
