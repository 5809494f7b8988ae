"""
docapi unit tests for the document stores and the query matcher
"""

import unittest as _unittest
from typing import Type

import sqlalchemy
import sqlalchemy.orm
from sqlalchemy.pool import StaticPool

from docapi_core.persistence import database, models
from docapi_core.persistence.store import DocumentStore, DuplicateKeyError, MemoryStore, SQLStore, \
    apply_options, apply_patch, matches

from . import conf


store_suite = _unittest.TestSuite()


def _tested(cls: Type):
    global store_suite
    for fixture in filter(lambda f: f.startswith("test_"), dir(cls)):
        store_suite.addTest(cls(fixture))
    return cls


@_tested
class MatcherTests(_unittest.TestCase):
    doc = {"_id": "1", "title": "Maths", "credits": 5, "tags": ["a", "b"], "meta": {"level": 2}, "empty": None}

    def test_equality(self):
        self.assertTrue(matches(self.doc, None))
        self.assertTrue(matches(self.doc, {}))
        self.assertTrue(matches(self.doc, {"title": "Maths", "credits": 5}))
        self.assertFalse(matches(self.doc, {"title": "Maths", "credits": 6}))
        self.assertTrue(matches(self.doc, {"meta.level": 2}))
        self.assertTrue(matches(self.doc, {"tags": "a"}))
        self.assertTrue(matches(self.doc, {"tags": ["a", "b"]}))
        self.assertTrue(matches(self.doc, {"missing": None}))
        self.assertTrue(matches(self.doc, {"empty": None}))

    def test_operators(self):
        self.assertTrue(matches(self.doc, {"credits": {"$gt": 4, "$lte": 5}}))
        self.assertFalse(matches(self.doc, {"credits": {"$lt": 5}}))
        self.assertTrue(matches(self.doc, {"credits": {"$in": [1, 5]}}))
        self.assertTrue(matches(self.doc, {"credits": {"$nin": [1, 2]}}))
        self.assertTrue(matches(self.doc, {"title": {"$ne": "Physics"}}))
        self.assertTrue(matches(self.doc, {"title": {"$exists": True}, "missing": {"$exists": False}}))
        self.assertFalse(matches(self.doc, {"title": {"$gt": 3}}))
        self.assertTrue(matches(self.doc, {"$or": [{"title": "Physics"}, {"credits": 5}]}))
        self.assertFalse(matches(self.doc, {"$and": [{"title": "Maths"}, {"credits": 4}]}))
        self.assertTrue(matches(self.doc, {"$nor": [{"title": "Physics"}]}))
        with self.assertRaises(ValueError):
            matches(self.doc, {"$where": "1"})
        with self.assertRaises(ValueError):
            matches(self.doc, {"credits": {"$regex": "5"}})

    def test_options(self):
        docs = [{"n": 3, "s": "b"}, {"n": 1, "s": "a"}, {"n": 2, "s": "a"}, {"s": "c"}]
        self.assertEqual([None, 1, 2, 3], [d.get("n") for d in apply_options(docs, {"sort": {"n": 1}})])
        self.assertEqual([3, 2, 1, None], [d.get("n") for d in apply_options(docs, {"sort": {"n": -1}})])
        self.assertEqual([1, 2], [d.get("n") for d in apply_options(docs, {"sort": "n", "skip": 1, "limit": 2})])
        self.assertEqual(
            [2, 1, 3, None],
            [d.get("n") for d in apply_options(docs, {"sort": [["s", 1], ["n", -1]]})]
        )
        self.assertEqual(docs, apply_options(docs, {"collation": {"locale": "de"}}))

    def test_patch(self):
        doc = {"_id": "1", "a": 1, "b": {"c": 2}}
        result = apply_patch(doc, {"$set": {"b.d": 3, "_id": "2"}, "$unset": {"a": ""}, "$inc": {"e": 2}})
        self.assertEqual({"_id": "1", "b": {"c": 2, "d": 3}, "e": 2}, result)
        self.assertEqual({"_id": "1", "a": 1, "b": {"c": 2}}, doc)
        with self.assertRaises(ValueError):
            apply_patch(doc, {"$push": {"a": 1}})


class _StoreTests:
    store: DocumentStore

    async def test_insert_and_find(self):
        doc = await self.store.insert("courses", {"title": "Maths"})
        self.assertIsInstance(doc["_id"], str)
        self.assertEqual([doc], await self.store.find("courses"))
        self.assertEqual([], await self.store.find("other"))
        self.assertEqual(doc, (await self.store.find("courses", {"_id": doc["_id"]}))[0])
        with self.assertRaises(DuplicateKeyError):
            await self.store.insert("courses", {"_id": doc["_id"], "title": "Physics"})
        await self.store.insert("other", {"_id": doc["_id"]})

    async def test_find_options_and_count(self):
        for i in range(5):
            await self.store.insert("courses", {"_id": str(i), "n": i})
        self.assertEqual(5, await self.store.count("courses"))
        self.assertEqual(2, await self.store.count("courses", {"n": {"$gte": 3}}))
        result = await self.store.find("courses", {"n": {"$gt": 0}}, {"sort": {"n": -1}, "skip": 1, "limit": 2})
        self.assertEqual(["3", "2"], [d["_id"] for d in result])

    async def test_update(self):
        await self.store.insert("courses", {"_id": "1", "title": "Maths", "credits": 5})
        result = await self.store.update("courses", {"_id": "1"}, {"$set": {"credits": 6}})
        self.assertEqual({"_id": "1", "title": "Maths", "credits": 6}, result)
        self.assertEqual([result], await self.store.find("courses"))
        self.assertIsNone(await self.store.update("courses", {"_id": "2"}, {"$set": {"credits": 1}}))

        upserted = await self.store.update("courses", {"_id": "2"}, {"$set": {"credits": 1}}, {"upsert": True})
        self.assertEqual({"_id": "2", "credits": 1}, upserted)
        self.assertEqual(2, await self.store.count("courses"))

    async def test_replace(self):
        await self.store.insert("courses", {"_id": "1", "title": "Maths", "credits": 5})
        result = await self.store.replace("courses", {"_id": "1"}, {"_id": "x", "title": "Physics"})
        self.assertEqual({"_id": "1", "title": "Physics"}, result)
        self.assertIsNone(await self.store.replace("courses", {"_id": "2"}, {"title": "Art"}))
        self.assertEqual(1, await self.store.count("courses"))

    async def test_delete(self):
        for i in range(4):
            await self.store.insert("courses", {"_id": str(i), "even": i % 2 == 0})
        self.assertEqual({"deleted_count": 1}, await self.store.delete("courses", {"_id": "1"}))
        self.assertEqual({"deleted_count": 0}, await self.store.delete("courses", {"_id": "1"}))
        self.assertEqual({"deleted_count": 2}, await self.store.delete_many("courses", {"even": True}))
        self.assertEqual(["3"], [d["_id"] for d in await self.store.find("courses")])

    async def test_documents_are_copies(self):
        doc = {"_id": "1", "tags": ["a"]}
        await self.store.insert("courses", doc)
        doc["tags"].append("b")
        found = (await self.store.find("courses"))[0]
        found["tags"].append("c")
        self.assertEqual(["a"], (await self.store.find("courses"))[0]["tags"])


@_tested
class MemoryStoreTests(_StoreTests, _unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        self.store = MemoryStore()


@_tested
class SQLStoreTests(_StoreTests, _unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        database_url = conf.DATABASE_URL or conf.DATABASE_FALLBACK_URL
        opts = {"echo": conf.SQLALCHEMY_ECHOING}
        if database_url.startswith("sqlite:"):
            opts.update({"connect_args": {"check_same_thread": False}, "poolclass": StaticPool})
        self.engine = sqlalchemy.create_engine(database_url, **opts)
        database.Base.metadata.create_all(bind=self.engine)
        self.store = SQLStore(sqlalchemy.orm.sessionmaker(autocommit=False, autoflush=False, bind=self.engine))

    def tearDown(self) -> None:
        database.Base.metadata.drop_all(bind=self.engine)
        self.engine.dispose()

    async def test_records(self):
        await self.store.insert("courses", {"_id": "1", "title": "Maths"})
        with self.store.session_factory() as session:
            records = session.query(models.DocumentRecord).all()
            self.assertEqual(1, len(records))
            self.assertEqual("courses", records[0].collection)
            self.assertEqual({"title": "Maths"}, records[0].content)
            self.assertEqual({"title": "Maths", "_id": "1"}, records[0].document)


if __name__ == '__main__':
    _unittest.main()
