"""
In-memory stand-in for the subset of the Motor API the repositories use.

Supports equality filters, $set/$inc/$setOnInsert updates with upsert,
find_one_and_update (returns the document before the update), sorted
cursors, unique keys, and sessions whose transactions roll back on error.
Every operation yields to the event loop once so concurrent tasks
interleave the way they would against a real server.

Limits: there is no snapshot isolation. Writes are visible to other
sessions before commit and there are no write conflicts, so concurrency
tests here only exercise what the conditional updates guarantee on their
own (for example the open -> closed debt transition).
"""

import asyncio
import copy
from typing import Any, Dict, List, Optional, Sequence, Tuple

from pymongo.errors import DuplicateKeyError


class _Result:
    def __init__(self, **kwargs):
        self.__dict__.update(kwargs)


class FakeCursor:
    def __init__(self, docs: List[dict]):
        self._docs = docs

    def sort(self, key: str, direction: int = 1) -> "FakeCursor":
        self._docs.sort(
            key=lambda d: (d.get(key) is None, d.get(key)),
            reverse=direction == -1
        )
        return self

    async def to_list(self, length: Optional[int]) -> List[dict]:
        await asyncio.sleep(0)
        docs = self._docs if length is None else self._docs[:length]
        return [copy.deepcopy(d) for d in docs]


class FakeCollection:
    def __init__(self, name: str, unique: Sequence[Tuple[str, ...]] = ()):
        self.name = name
        self.docs: Dict[Any, dict] = {}
        self.unique = list(unique)

    def _match(self, doc: dict, query: dict) -> bool:
        return all(doc.get(key) == value for key, value in query.items())

    def _write(self, session, key, doc: dict):
        """Store doc, journaling (previous, written) so an abort can undo it."""
        if session is not None and session.in_transaction:
            session.journal.append((self, key, copy.deepcopy(self.docs.get(key)), copy.deepcopy(doc)))
        self.docs[key] = doc

    def _check_unique(self, doc: dict, exclude_id=None):
        for fields in self.unique:
            values = tuple(doc.get(f) for f in fields)
            if any(v is None for v in values):
                continue
            for other_id, other in self.docs.items():
                if other_id == exclude_id:
                    continue
                if tuple(other.get(f) for f in fields) == values:
                    raise DuplicateKeyError(f"duplicate key on {fields}")

    async def create_index(self, *args, **kwargs):
        return "index"

    async def find_one(self, query: dict, session=None) -> Optional[dict]:
        await asyncio.sleep(0)
        for doc in self.docs.values():
            if self._match(doc, query):
                return copy.deepcopy(doc)
        return None

    def find(self, query: dict, session=None) -> FakeCursor:
        return FakeCursor([d for d in self.docs.values() if self._match(d, query)])

    async def insert_one(self, document: dict, session=None):
        await asyncio.sleep(0)
        doc = copy.deepcopy(document)
        if doc["_id"] in self.docs:
            raise DuplicateKeyError(f"duplicate _id {doc['_id']}")
        self._check_unique(doc)
        self._write(session, doc["_id"], doc)
        return _Result(inserted_id=doc["_id"])

    def _apply(self, doc: dict, update: dict, inserting: bool) -> dict:
        new = copy.deepcopy(doc)
        for key, value in update.get("$set", {}).items():
            new[key] = copy.deepcopy(value)
        for key, value in update.get("$inc", {}).items():
            new[key] = new.get(key, 0) + value
        if inserting:
            for key, value in update.get("$setOnInsert", {}).items():
                new[key] = copy.deepcopy(value)
        return new

    async def update_one(self, query: dict, update: dict, upsert: bool = False, session=None):
        await asyncio.sleep(0)
        for key, doc in self.docs.items():
            if self._match(doc, query):
                new = self._apply(doc, update, inserting=False)
                self._check_unique(new, exclude_id=key)
                self._write(session, key, new)
                return _Result(matched_count=1, modified_count=int(new != doc), upserted_id=None)

        if not upsert:
            return _Result(matched_count=0, modified_count=0, upserted_id=None)

        new = self._apply(dict(query), update, inserting=True)
        self._check_unique(new)
        self._write(session, new["_id"], new)
        return _Result(matched_count=0, modified_count=0, upserted_id=new["_id"])

    async def find_one_and_update(self, query: dict, update: dict, session=None) -> Optional[dict]:
        await asyncio.sleep(0)
        for key, doc in self.docs.items():
            if self._match(doc, query):
                self._write(session, key, self._apply(doc, update, inserting=False))
                return copy.deepcopy(doc)
        return None


class _Transaction:
    def __init__(self, session: "FakeSession"):
        self.session = session

    async def __aenter__(self):
        self.session.in_transaction = True
        self.session.journal = []
        return self

    async def __aexit__(self, exc_type, exc, tb):
        if exc_type is not None:
            # Undo newest first, and only documents still holding this session's
            # write, so another session's committed change is never clobbered
            for collection, key, previous, written in reversed(self.session.journal):
                if collection.docs.get(key) != written:
                    continue
                if previous is None:
                    collection.docs.pop(key, None)
                else:
                    collection.docs[key] = previous
            self.session.client.aborted += 1
        else:
            self.session.client.committed += 1
        self.session.in_transaction = False
        self.session.journal = []
        return False


class FakeSession:
    def __init__(self, client: "FakeClient"):
        self.client = client
        self.in_transaction = False
        self.journal: List[tuple] = []

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False

    def start_transaction(self) -> _Transaction:
        return _Transaction(self)


class FakeClient:
    def __init__(self):
        self.committed = 0
        self.aborted = 0

    async def start_session(self) -> FakeSession:
        return FakeSession(self)

    def close(self):
        pass


class FakeDatabase:
    def __init__(self):
        self.client = FakeClient()
        self._collections: Dict[str, FakeCollection] = {
            "actions": FakeCollection("actions", unique=[("apartment_id", "idempotency_key")]),
        }

    def __getitem__(self, name: str) -> FakeCollection:
        if name not in self._collections:
            self._collections[name] = FakeCollection(name)
        return self._collections[name]

    def __getattr__(self, name: str) -> FakeCollection:
        if name.startswith("_"):
            raise AttributeError(name)
        return self[name]
