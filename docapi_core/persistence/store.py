"""
Document stores used as backing persistence of the resource modules

A store keeps JSON documents in named collections. Every document has
a string ``_id`` which is generated on insert, if absent. Filters use a
small subset of the MongoDB query language (see ``matches``), update
patches support the ``$set``, ``$unset`` and ``$inc`` operators.
"""

import abc
import copy
import uuid
import logging
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

import sqlalchemy.orm

from . import database, models


logger = logging.getLogger(__name__)

Document = Dict[str, Any]

ID_KEY = "_id"
UPDATE_OPERATORS = ("$set", "$unset", "$inc")


class DuplicateKeyError(ValueError):
    """
    Exception raised when a document with the same ``_id`` already exists in a collection
    """


def _resolve(doc: Document, key: str) -> Tuple[bool, Any]:
    current = doc
    for part in key.split("."):
        if isinstance(current, dict) and part in current:
            current = current[part]
        else:
            return False, None
    return True, current


def _compare(value: Any, other: Any, func: Callable[[Any, Any], bool]) -> bool:
    try:
        return value is not None and func(value, other)
    except TypeError:
        return False


def _match_operators(present: bool, value: Any, condition: Dict[str, Any]) -> bool:
    for op, arg in condition.items():
        if op == "$eq":
            if not _match_value(present, value, arg):
                return False
        elif op == "$ne":
            if _match_value(present, value, arg):
                return False
        elif op == "$in":
            if not any(_match_value(present, value, a) for a in arg):
                return False
        elif op == "$nin":
            if any(_match_value(present, value, a) for a in arg):
                return False
        elif op == "$gt":
            if not _compare(value, arg, lambda a, b: a > b):
                return False
        elif op == "$gte":
            if not _compare(value, arg, lambda a, b: a >= b):
                return False
        elif op == "$lt":
            if not _compare(value, arg, lambda a, b: a < b):
                return False
        elif op == "$lte":
            if not _compare(value, arg, lambda a, b: a <= b):
                return False
        elif op == "$exists":
            if present != bool(arg):
                return False
        else:
            raise ValueError(f"Unsupported query operator {op!r}")
    return True


def _match_value(present: bool, value: Any, condition: Any) -> bool:
    if isinstance(condition, dict) and condition and all(k.startswith("$") for k in condition):
        return _match_operators(present, value, condition)
    if isinstance(value, list) and not isinstance(condition, list):
        return condition in value
    if not present:
        return condition is None
    return value == condition


def matches(doc: Document, query: Optional[Dict[str, Any]]) -> bool:
    """
    Determine whether the document satisfies the query

    Supported are plain equality (also on dotted paths and list members),
    the logical operators ``$or``, ``$and`` and ``$nor`` as well as the field
    operators ``$eq``, ``$ne``, ``$in``, ``$nin``, ``$gt``, ``$gte``, ``$lt``,
    ``$lte`` and ``$exists``.
    """

    for key, condition in (query or {}).items():
        if key == "$or":
            if not any(matches(doc, sub) for sub in condition):
                return False
        elif key == "$and":
            if not all(matches(doc, sub) for sub in condition):
                return False
        elif key == "$nor":
            if any(matches(doc, sub) for sub in condition):
                return False
        elif key.startswith("$"):
            raise ValueError(f"Unsupported query operator {key!r}")
        else:
            present, value = _resolve(doc, key)
            if not _match_value(present, value, condition):
                return False
    return True


def _sort_spec(sort: Any) -> List[Tuple[str, int]]:
    if not sort:
        return []
    if isinstance(sort, str):
        return [(sort, 1)]
    if isinstance(sort, dict):
        return [(k, -1 if v in (-1, "-1", "desc", "descending") else 1) for k, v in sort.items()]
    return [(entry[0], entry[1]) if isinstance(entry, (list, tuple)) else (entry, 1) for entry in sort]


def apply_options(docs: List[Document], options: Optional[Dict[str, Any]] = None) -> List[Document]:
    """
    Apply the store options ``sort``, ``skip`` and ``limit`` to a list of documents

    The ``collation`` option is accepted but has no effect.
    """

    options = options or {}
    docs = list(docs)
    for key, direction in reversed(_sort_spec(options.get("sort"))):
        def sort_key(d: Document, k: str = key):
            present, value = _resolve(d, k)
            return (0, "") if not present or value is None else (1, value)
        try:
            docs.sort(key=sort_key, reverse=direction < 0)
        except TypeError:
            docs.sort(key=lambda d, k=key: str(_resolve(d, k)[1]), reverse=direction < 0)
    skip = options.get("skip") or 0
    limit = options.get("limit") or 0
    docs = docs[int(skip):]
    if limit:
        docs = docs[:int(limit)]
    return docs


def apply_patch(doc: Document, patch: Dict[str, Any]) -> Document:
    """
    Return a copy of the document with the update operators of the patch applied
    """

    result = copy.deepcopy(doc)
    for op, fields in patch.items():
        if op not in UPDATE_OPERATORS:
            raise ValueError(f"Unsupported update operator {op!r}")
        for key, value in (fields or {}).items():
            if key == ID_KEY:
                continue
            *parents, last = key.split(".")
            target = result
            for part in parents:
                target = target.setdefault(part, {})
            if op == "$set":
                target[last] = copy.deepcopy(value)
            elif op == "$unset":
                target.pop(last, None)
            elif op == "$inc":
                target[last] = target.get(last, 0) + value
    return result


def _upsert_base(query: Optional[Dict[str, Any]]) -> Document:
    return {
        k: copy.deepcopy(v) for k, v in (query or {}).items()
        if not k.startswith("$") and not (isinstance(v, dict) and any(str(x).startswith("$") for x in v))
    }


class DocumentStore(abc.ABC):
    """
    Abstract document store providing async CRUD functions by collection name
    """

    @staticmethod
    def make_id() -> str:
        return uuid.uuid4().hex

    @abc.abstractmethod
    async def find(
            self,
            collection: str,
            query: Optional[Dict[str, Any]] = None,
            options: Optional[Dict[str, Any]] = None
    ) -> List[Document]:
        pass

    @abc.abstractmethod
    async def insert(self, collection: str, doc: Document, options: Optional[Dict[str, Any]] = None) -> Document:
        pass

    @abc.abstractmethod
    async def update(
            self,
            collection: str,
            query: Dict[str, Any],
            patch: Dict[str, Any],
            options: Optional[Dict[str, Any]] = None
    ) -> Optional[Document]:
        """
        Update the first document matching the query and return its new state

        The option ``upsert`` creates a new document from the plain
        equality fields of the query, if no document matched.
        """

    @abc.abstractmethod
    async def replace(
            self,
            collection: str,
            query: Dict[str, Any],
            doc: Document,
            options: Optional[Dict[str, Any]] = None
    ) -> Optional[Document]:
        pass

    @abc.abstractmethod
    async def delete(
            self,
            collection: str,
            query: Dict[str, Any],
            options: Optional[Dict[str, Any]] = None
    ) -> Dict[str, int]:
        pass

    @abc.abstractmethod
    async def delete_many(
            self,
            collection: str,
            query: Dict[str, Any],
            options: Optional[Dict[str, Any]] = None
    ) -> Dict[str, int]:
        pass

    @abc.abstractmethod
    async def count(self, collection: str, query: Optional[Dict[str, Any]] = None) -> int:
        pass


class MemoryStore(DocumentStore):
    """
    Non-persistent store keeping deep copies of all documents in memory
    """

    def __init__(self):
        self.collections: Dict[str, List[Document]] = {}

    def _matching(self, collection: str, query: Optional[Dict[str, Any]]) -> Iterable[Tuple[int, Document]]:
        for i, doc in enumerate(self.collections.get(collection, [])):
            if matches(doc, query):
                yield i, doc

    async def find(self, collection, query=None, options=None):
        docs = [doc for _, doc in self._matching(collection, query)]
        return copy.deepcopy(apply_options(docs, options))

    async def insert(self, collection, doc, options=None):
        doc = copy.deepcopy(doc)
        doc.setdefault(ID_KEY, self.make_id())
        docs = self.collections.setdefault(collection, [])
        if any(d[ID_KEY] == doc[ID_KEY] for d in docs):
            raise DuplicateKeyError(f"Document {doc[ID_KEY]!r} already exists in {collection!r}")
        docs.append(doc)
        return copy.deepcopy(doc)

    async def update(self, collection, query, patch, options=None):
        for i, doc in self._matching(collection, query):
            self.collections[collection][i] = apply_patch(doc, patch)
            return copy.deepcopy(self.collections[collection][i])
        if (options or {}).get("upsert"):
            return await self.insert(collection, apply_patch(_upsert_base(query), patch))

    async def replace(self, collection, query, doc, options=None):
        for i, old in self._matching(collection, query):
            new = {k: copy.deepcopy(v) for k, v in doc.items() if k != ID_KEY}
            new[ID_KEY] = old[ID_KEY]
            self.collections[collection][i] = new
            return copy.deepcopy(new)
        if (options or {}).get("upsert"):
            return await self.insert(collection, {**_upsert_base(query), **doc})

    async def delete(self, collection, query, options=None):
        for i, _ in self._matching(collection, query):
            del self.collections[collection][i]
            return {"deleted_count": 1}
        return {"deleted_count": 0}

    async def delete_many(self, collection, query, options=None):
        docs = self.collections.get(collection, [])
        remaining = [doc for doc in docs if not matches(doc, query)]
        self.collections[collection] = remaining
        return {"deleted_count": len(docs) - len(remaining)}

    async def count(self, collection, query=None):
        return sum(1 for _ in self._matching(collection, query))


class SQLStore(DocumentStore):
    """
    Store keeping documents as JSON records in a single SQL table using SQLAlchemy

    Filtering happens on the loaded records of the collection,
    so this store is meant for small to medium-sized collections.
    """

    def __init__(self, session_factory: Callable[[], sqlalchemy.orm.Session] = database.get_new_session):
        self.session_factory = session_factory

    @staticmethod
    def _records(
            session: sqlalchemy.orm.Session,
            collection: str,
            query: Optional[Dict[str, Any]]
    ) -> List[models.DocumentRecord]:
        records = session.query(models.DocumentRecord).filter_by(collection=collection)
        return [r for r in records.order_by(models.DocumentRecord.pk).all() if matches(r.document, query)]

    async def find(self, collection, query=None, options=None):
        with self.session_factory() as session:
            return apply_options([r.document for r in self._records(session, collection, query)], options)

    async def insert(self, collection, doc, options=None):
        content = {k: v for k, v in doc.items() if k != ID_KEY}
        doc_id = str(doc.get(ID_KEY) or self.make_id())
        with self.session_factory() as session:
            if session.query(models.DocumentRecord).filter_by(collection=collection, id=doc_id).count():
                raise DuplicateKeyError(f"Document {doc_id!r} already exists in {collection!r}")
            record = models.DocumentRecord(collection=collection, id=doc_id, content=content)
            session.add(record)
            session.commit()
            return record.document

    async def _store(self, collection, query, make: Callable[[Document], Document], options, fallback: Document):
        with self.session_factory() as session:
            records = self._records(session, collection, query)
            if records:
                record = records[0]
                new = make(record.document)
                record.content = {k: v for k, v in new.items() if k != ID_KEY}
                session.add(record)
                session.commit()
                return record.document
        if (options or {}).get("upsert"):
            return await self.insert(collection, make(fallback))
        return None

    async def update(self, collection, query, patch, options=None):
        return await self._store(
            collection, query, lambda d: apply_patch(d, patch), options, _upsert_base(query)
        )

    async def replace(self, collection, query, doc, options=None):
        return await self._store(
            collection, query, lambda d: {**doc, ID_KEY: d.get(ID_KEY)}, options, _upsert_base(query)
        )

    async def delete(self, collection, query, options=None):
        with self.session_factory() as session:
            records = self._records(session, collection, query)
            if not records:
                return {"deleted_count": 0}
            session.delete(records[0])
            session.commit()
            return {"deleted_count": 1}

    async def delete_many(self, collection, query, options=None):
        with self.session_factory() as session:
            records = self._records(session, collection, query)
            for record in records:
                session.delete(record)
            session.commit()
            return {"deleted_count": len(records)}

    async def count(self, collection, query=None):
        with self.session_factory() as session:
            return len(self._records(session, collection, query))
