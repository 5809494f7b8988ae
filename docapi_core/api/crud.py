"""
docapi CRUD operations combining validation, hooks, cache and document store
"""

import copy
import asyncio
import logging
from typing import Any, Dict, List, Optional

from .base import ConfigurationError, Conflict, NotFoundError
from .helpers import stringify_values
from .query import QueryEngine
from ..misc.cache import ResultCache
from ..misc.hooks import HookRegistry
from ..persistence.store import Document, DocumentStore, DuplicateKeyError
from ..schemas.engine import Validator


logger = logging.getLogger(__name__)

DEFAULT_OPTIONS = {
    "validate": True,
    "emit_event": True,
    "raw_update": False,
    "upsert": False,
    "normalize_query": True
}


class CrudOperations:
    """
    Create, read, update and delete documents of a resource

    Every operation accepts an optional dictionary of options, which is
    merged with the defaults of the resource (schema and collection name)
    and ``DEFAULT_OPTIONS``; the caller's dictionary is never modified:

    * ``validate``: validate the data against the schema before writing
    * ``emit_event``: invoke the ``post_*`` hooks after writing
    * ``raw_update``: treat update data as update operator document
      (e.g. ``{"$inc": {"count": 1}}``) instead of a set of fields
    * ``upsert``: create the document if no document matched an update
    * ``normalize_query``: parse store options out of the filter of ``find``
    """

    def __init__(
            self,
            store: DocumentStore,
            validator: Validator,
            hooks: HookRegistry,
            cache: ResultCache,
            query_engine: QueryEngine,
            schema_name: Optional[str] = None,
            collection_name: Optional[str] = None
    ):
        self.store = store
        self.validator = validator
        self.hooks = hooks
        self.cache = cache
        self.query_engine = query_engine
        self.schema_name = schema_name
        self.collection_name = collection_name

    def get_options(self, options: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        merged = dict(DEFAULT_OPTIONS)
        merged["schema_name"] = self.schema_name
        merged["collection_name"] = self.collection_name
        merged.update({k: v for k, v in (options or {}).items() if v is not None})
        if not merged["collection_name"]:
            raise ConfigurationError("No collection name configured for the CRUD operation")
        return merged

    async def _find_one(self, query: Dict[str, Any], options: Dict[str, Any]) -> Optional[Document]:
        docs = await self.store.find(options["collection_name"], query, {"limit": 1})
        return docs[0] if docs else None

    async def insert(self, data: Document, options: Optional[Dict[str, Any]] = None) -> Document:
        opts = self.get_options(options)
        data = await self.hooks.pre_insert.invoke(copy.deepcopy(data), opts)
        if opts["validate"]:
            data = await self.validator.validate(opts["schema_name"], data)

        try:
            doc = await self.store.insert(opts["collection_name"], data)
        except DuplicateKeyError as exc:
            raise Conflict("A document with this ID already exists.", str(exc)) from exc

        if opts["emit_event"]:
            await self.hooks.post_insert.invoke(stringify_values(doc), opts)
        return doc

    async def find(
            self,
            query: Optional[Dict[str, Any]] = None,
            options: Optional[Dict[str, Any]] = None,
            store_options: Optional[Dict[str, Any]] = None
    ) -> List[Document]:
        opts = self.get_options(options)
        store_options = dict(store_options or {})
        if opts["normalize_query"]:
            query = await self.query_engine.parse_query(opts["schema_name"], query, store_options)
        cache_options = {"collection_name": opts["collection_name"], "schema_name": opts["schema_name"]}
        return await self.cache.get(query or {}, cache_options, store_options)

    async def update(
            self,
            query: Dict[str, Any],
            data: Document,
            options: Optional[Dict[str, Any]] = None
    ) -> Document:
        """
        Update the first document matching the query with the given data

        :raises NotFoundError: when no document matched and ``upsert`` is disabled
        """

        opts = self.get_options(options)
        original = await self._find_one(query, opts)
        if original is None and not opts["upsert"]:
            raise NotFoundError(f"Document in {opts['collection_name']}", str(query))

        data = await self.hooks.pre_update.invoke(copy.deepcopy(data), original, opts)
        if opts["raw_update"]:
            patch = dict(data)
            if opts["validate"] and isinstance(patch.get("$set"), dict):
                patch["$set"] = await self.validator.validate_lax(opts["schema_name"], patch["$set"])
        else:
            if opts["validate"]:
                data = await self.validator.validate_lax(opts["schema_name"], data)
            patch = {"$set": data}

        result = await self.store.update(opts["collection_name"], query, patch, {"upsert": opts["upsert"]})
        if result is None:
            raise NotFoundError(f"Document in {opts['collection_name']}", str(query))

        if opts["emit_event"]:
            await self.hooks.post_update.invoke(stringify_values(original), stringify_values(result), opts)
        return result

    async def replace(
            self,
            query: Dict[str, Any],
            data: Document,
            options: Optional[Dict[str, Any]] = None
    ) -> Document:
        opts = self.get_options(options)
        original = await self._find_one(query, opts)
        if original is None and not opts["upsert"]:
            raise NotFoundError(f"Document in {opts['collection_name']}", str(query))

        data = await self.hooks.pre_update.invoke(copy.deepcopy(data), original, opts)
        if original is not None:
            # callers can't send internal or read-only fields, so a replacement keeps the stored ones
            protected = await self.validator.protected_keys(opts["schema_name"])
            kept = {k: copy.deepcopy(original[k]) for k in protected if k in original}
            data = {**kept, **data}
        if opts["validate"]:
            data = await self.validator.validate(opts["schema_name"], data)

        result = await self.store.replace(opts["collection_name"], query, data, {"upsert": opts["upsert"]})
        if result is None:
            raise NotFoundError(f"Document in {opts['collection_name']}", str(query))

        if opts["emit_event"]:
            await self.hooks.post_update.invoke(stringify_values(original), stringify_values(result), opts)
        return result

    async def delete(self, query: Dict[str, Any], options: Optional[Dict[str, Any]] = None) -> Document:
        """
        Delete the first document matching the query and return it

        :raises NotFoundError: when no document matched the query
        """

        opts = self.get_options(options)
        original = await self._find_one(query, opts)
        if original is None:
            raise NotFoundError(f"Document in {opts['collection_name']}", str(query))

        await self.hooks.pre_delete.invoke(copy.deepcopy(original), opts)
        await self.store.delete(opts["collection_name"], {"_id": original["_id"]})

        if opts["emit_event"]:
            await self.hooks.post_delete.invoke(stringify_values(original), opts)
        return original

    async def delete_many(self, query: Dict[str, Any], options: Optional[Dict[str, Any]] = None) -> Dict[str, int]:
        """
        Delete all documents matching the query, invoking the delete hook once per document
        """

        opts = self.get_options(options)
        docs = await self.store.find(opts["collection_name"], query)
        result = await self.store.delete_many(opts["collection_name"], {"_id": {"$in": [d["_id"] for d in docs]}})

        if opts["emit_event"] and docs:
            await asyncio.gather(*[self.hooks.post_delete.invoke(stringify_values(doc), opts) for doc in docs])
        return result
