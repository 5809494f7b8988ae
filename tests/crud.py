"""
docapi unit tests for the CRUD operations and the request dispatcher
"""

import datetime
import unittest as _unittest
from typing import Type

from docapi_core.api.base import Conflict, ConfigurationError, InternalConsistencyError, MethodNotSupportedError, \
    NotFoundError, SchemaValidationError, UnauthorizedError
from docapi_core.api.crud import CrudOperations
from docapi_core.api.dependency import RequestContextBuilder
from docapi_core.api.dispatcher import RequestDispatcher, build_arguments, contract, get_operation
from docapi_core.api.query import QueryEngine
from docapi_core.api.routes import RouteDefinition, Verb
from docapi_core.misc.access import AccessController
from docapi_core.misc.cache import ResultCache
from docapi_core.misc.hooks import HookRegistry
from docapi_core.schemas.engine import Validator

from . import utils


crud_suite = _unittest.TestSuite()


def _tested(cls: Type):
    global crud_suite
    for fixture in filter(lambda f: f.startswith("test_"), dir(cls)):
        crud_suite.addTest(cls(fixture))
    return cls


class _BaseCrudTests(utils.BaseAsyncTest):
    def setUp(self) -> None:
        super().setUp()
        self.hooks = HookRegistry()
        self.validator = Validator(self.registry)
        self.query_engine = QueryEngine(self.validator, 10, 20)
        self.cache = ResultCache(self.store, enable=False)
        self.crud = CrudOperations(
            self.store, self.validator, self.hooks, self.cache, self.query_engine, "course", "courses"
        )


@_tested
class CrudOperationTests(_BaseCrudTests):
    async def test_options(self):
        options = {"upsert": True, "schema_name": None}
        merged = self.crud.get_options(options)
        self.assertEqual({"upsert": True, "schema_name": None}, options)
        self.assertTrue(merged["upsert"])
        self.assertTrue(merged["validate"])
        self.assertEqual("course", merged["schema_name"])
        self.assertEqual("courses", merged["collection_name"])
        with self.assertRaises(ConfigurationError):
            CrudOperations(self.store, self.validator, self.hooks, self.cache, self.query_engine).get_options()

    async def test_insert(self):
        events = []
        self.hooks.pre_insert.tap(lambda data, options: {**data, "owner": "alice"})
        self.hooks.post_insert.tap(lambda doc, options: events.append(doc))

        data = {"title": "Maths"}
        doc = await self.crud.insert(data)
        self.assertEqual({"title": "Maths"}, data)
        self.assertEqual("alice", doc["owner"])
        self.assertEqual(5, doc["credits"])
        self.assertIn("_id", doc)
        self.assertEqual([doc], events)
        self.assertEqual([doc], await self.store.find("courses"))

        await self.crud.insert({"title": "Physics"}, {"emit_event": False})
        self.assertEqual(1, len(events))

    async def test_insert_validation(self):
        with self.assertRaises(SchemaValidationError):
            await self.crud.insert({"credits": 2})
        self.assertEqual(0, await self.store.count("courses"))

        doc = await self.crud.insert({"credits": "many"}, {"validate": False})
        self.assertEqual("many", doc["credits"])

    async def test_insert_conflict(self):
        self.hooks.pre_insert.tap(lambda data, options: {**data, "_id": "fixed"})
        await self.crud.insert({"title": "Maths"}, {"validate": False})
        with self.assertRaises(Conflict) as cm:
            await self.crud.insert({"title": "Maths"}, {"validate": False})
        self.assertEqual(409, cm.exception.status_code)

    async def test_stringified_events(self):
        events = []
        self.hooks.post_insert.tap(lambda doc, options: events.append(doc))
        await self.crud.insert({"title": "Maths", "at": datetime.date(2020, 1, 1)}, {"validate": False})
        self.assertEqual("2020-01-01", events[0]["at"])

    async def test_find(self):
        for title in ["Maths", "Physics", "Art"]:
            await self.crud.insert({"title": title, "credits": len(title)})
        result = await self.crud.find({"credits": "5", "sort": '{"title": 1}'})
        self.assertEqual(["Maths"], [d["title"] for d in result])
        result = await self.crud.find({"sort": '{"title": -1}', "limit": "2"})
        self.assertEqual(["Physics", "Maths"], [d["title"] for d in result])
        self.assertEqual(3, len(await self.crud.find()))

    async def test_update(self):
        doc = await self.crud.insert({"title": "Maths", "credits": 5})
        calls = []

        def pre_update(data, original, options):
            calls.append(("pre", original["credits"]))
            return {**data, "tags": ["changed"]}

        self.hooks.pre_update.tap(pre_update)
        self.hooks.post_update.tap(lambda old, new, options: calls.append(("post", old["credits"], new["credits"])))

        result = await self.crud.update({"_id": doc["_id"]}, {"credits": "7"})
        self.assertEqual(7, result["credits"])
        self.assertEqual("Maths", result["title"])
        self.assertEqual(["changed"], result["tags"])
        self.assertEqual([("pre", 5), ("post", 5, 7)], calls)

        with self.assertRaises(SchemaValidationError):
            await self.crud.update({"_id": doc["_id"]}, {"credits": "many"})
        with self.assertRaises(NotFoundError):
            await self.crud.update({"_id": "missing"}, {"credits": 1})

    async def test_raw_update_and_upsert(self):
        doc = await self.crud.insert({"title": "Maths", "credits": 5})
        result = await self.crud.update({"_id": doc["_id"]}, {"$inc": {"credits": 2}}, {"raw_update": True})
        self.assertEqual(7, result["credits"])

        result = await self.crud.update({"_id": "new"}, {"title": "Art"}, {"upsert": True})
        self.assertEqual({"_id": "new", "title": "Art"}, result)

    async def test_replace(self):
        doc = await self.crud.insert({"title": "Maths", "credits": 1, "tags": ["a"]})
        result = await self.crud.replace({"_id": doc["_id"]}, {"title": "Physics"})
        self.assertEqual(doc["_id"], result["_id"])
        self.assertEqual("Physics", result["title"])
        self.assertEqual(5, result["credits"])
        self.assertEqual([], result["tags"])

        doc = await self.crud.insert({"title": "Art", "owner": "alice", "grading_key": "secret"})
        result = await self.crud.replace({"_id": doc["_id"]}, {"title": "Art II"})
        self.assertEqual(("alice", "secret"), (result["owner"], result["grading_key"]))
        result = await self.crud.replace({"_id": doc["_id"]}, {"title": "Art III", "owner": "bob"})
        self.assertEqual(("bob", "secret"), (result["owner"], result["grading_key"]))

        with self.assertRaises(SchemaValidationError):
            await self.crud.replace({"_id": doc["_id"]}, {"credits": 1})
        with self.assertRaises(NotFoundError):
            await self.crud.replace({"_id": "missing"}, {"title": "Art"})

    async def test_delete(self):
        doc = await self.crud.insert({"title": "Maths"})
        deleted = []
        self.hooks.pre_delete.tap(lambda d, options: deleted.append(("pre", d["_id"])))
        self.hooks.post_delete.tap(lambda d, options: deleted.append(("post", d["_id"])))
        self.assertEqual(doc, await self.crud.delete({"_id": doc["_id"]}))
        self.assertEqual([("pre", doc["_id"]), ("post", doc["_id"])], deleted)
        self.assertEqual(0, await self.store.count("courses"))
        with self.assertRaises(NotFoundError):
            await self.crud.delete({"_id": doc["_id"]})

    async def test_delete_aborted_by_hook(self):
        doc = await self.crud.insert({"title": "Maths"})

        def veto(d, options):
            raise UnauthorizedError(detail="locked")

        self.hooks.pre_delete.tap(veto)
        with self.assertRaises(UnauthorizedError):
            await self.crud.delete({"_id": doc["_id"]})
        self.assertEqual(1, await self.store.count("courses"))

    async def test_delete_many(self):
        for title in ["Maths", "Physics", "Art"]:
            await self.crud.insert({"title": title, "credits": 1 if title != "Art" else 2})
        deleted = []

        def observer(doc, options):
            if doc["title"] == "Maths":
                raise RuntimeError("broken listener")
            deleted.append(doc["title"])

        self.hooks.post_delete.tap(observer)
        with self.assertLogs("docapi_core.misc.hooks", "ERROR"):
            result = await self.crud.delete_many({"credits": 1})
        self.assertEqual({"deleted_count": 2}, result)
        self.assertEqual(["Physics"], deleted)
        self.assertEqual(["Art"], [d["title"] for d in await self.store.find("courses")])


@_tested
class DispatcherTests(_BaseCrudTests):
    url = "http://testserver/courses"

    def setUp(self) -> None:
        super().setUp()
        self.access = AccessController(self.hooks.access_check)
        self.dispatcher = RequestDispatcher(self.crud, self.access, self.query_engine, self.validator)
        self.builder = RequestContextBuilder("courses", "course")

        async def handler(*args):
            return None

        self.route = RouteDefinition("/", {verb: handler for verb in Verb})

    def test_verb_mapping(self):
        self.assertEqual("insert", get_operation("POST"))
        self.assertEqual("find", get_operation(Verb.GET))
        self.assertEqual("replace", get_operation("put"))
        self.assertEqual("update", get_operation("PATCH"))
        self.assertEqual("delete", get_operation("DELETE"))
        with self.assertRaises(MethodNotSupportedError):
            get_operation("OPTIONS")

    def test_arguments(self):
        query, data = {"_id": "1"}, {"title": "Maths"}
        for verb, expected in [
            (Verb.GET, [query]),
            (Verb.DELETE, [query]),
            (Verb.POST, [data]),
            (Verb.PUT, [query, data]),
            (Verb.PATCH, [query, data])
        ]:
            ctx = self.builder.build(self.route, verb, {"_id": "1"}, body=data)
            self.assertEqual(expected, build_arguments(ctx))

    def test_contraction(self):
        self.assertEqual({"a": 1}, contract([{"a": 1}], "1"))
        with self.assertRaises(NotFoundError):
            contract([], "1")
        with self.assertRaises(InternalConsistencyError):
            contract([{"a": 1}, {"a": 2}], "1")

    async def test_status_codes(self):
        ctx = self.builder.build(self.route, Verb.POST, body={"title": "Maths", "grading_key": "k"})
        response = await self.dispatcher.dispatch(ctx, utils.SUPER_CALLER, self.url)
        self.assertEqual(201, response.status_code)
        self.assertNotIn(b"grading_key", response.body)
        doc = (await self.store.find("courses"))[0]
        self.assertEqual("k", doc["grading_key"])

        for verb, body, status in [
            (Verb.GET, None, 200),
            (Verb.PATCH, {"credits": 1}, 200),
            (Verb.PUT, {"title": "Art"}, 200),
            (Verb.DELETE, None, 204)
        ]:
            ctx = self.builder.build(self.route, verb, {"_id": doc["_id"]}, body=body)
            response = await self.dispatcher.dispatch(ctx, utils.SUPER_CALLER, self.url)
            self.assertEqual(status, response.status_code, verb)
        self.assertEqual(b"", response.body)

    async def test_missing_document(self):
        ctx = self.builder.build(self.route, Verb.GET, {"_id": "missing"})
        with self.assertRaises(NotFoundError):
            await self.dispatcher.dispatch(ctx, utils.USER_CALLER, self.url)

    async def test_access_checks(self):
        self.hooks.access_check.tap(lambda caller, item: item.get("owner") in (None, caller.user))
        mine = await self.store.insert("courses", {"title": "Mine", "owner": "alice"})
        other = await self.store.insert("courses", {"title": "Other", "owner": "bob"})

        ctx = self.builder.build(self.route, Verb.GET)
        response = await self.dispatcher.dispatch(ctx, utils.USER_CALLER, self.url)
        self.assertIn(b"Mine", response.body)
        self.assertNotIn(b"Other", response.body)

        ctx = self.builder.build(self.route, Verb.GET, {"_id": other["_id"]})
        with self.assertRaises(UnauthorizedError):
            await self.dispatcher.dispatch(ctx, utils.USER_CALLER, self.url)

        ctx = self.builder.build(self.route, Verb.DELETE, {"_id": other["_id"]})
        with self.assertRaises(UnauthorizedError):
            await self.dispatcher.dispatch(ctx, utils.USER_CALLER, self.url)
        self.assertEqual(2, await self.store.count("courses"))

        ctx = self.builder.build(self.route, Verb.DELETE, {"_id": mine["_id"]})
        self.assertEqual(204, (await self.dispatcher.dispatch(ctx, utils.USER_CALLER, self.url)).status_code)
        ctx = self.builder.build(self.route, Verb.DELETE, {"_id": other["_id"]})
        self.assertEqual(204, (await self.dispatcher.dispatch(ctx, utils.SUPER_CALLER, self.url)).status_code)


if __name__ == '__main__':
    _unittest.main()
