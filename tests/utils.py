"""
Helper functions to make writing unit tests for the docapi core easier
"""

import os
import secrets
import unittest
from typing import Any, Iterable, List, Mapping, Optional, Tuple, Union

import pydantic
from fastapi.testclient import TestClient

from docapi_core import settings as _settings
from docapi_core.api.api import create_app
from docapi_core.api.auth import CallerContext, create_access_token
from docapi_core.api.module import ResourceModule
from docapi_core.persistence.store import MemoryStore
from docapi_core.schemas import config
from docapi_core.schemas.engine import SchemaRegistry

from . import conf


class Course(pydantic.BaseModel):
    title: pydantic.constr(min_length=1)
    credits: pydantic.NonNegativeInt = 5
    tags: List[str] = []
    owner: Optional[str] = pydantic.Field(None, json_schema_extra={"read_only": True})
    grading_key: Optional[str] = pydantic.Field(None, json_schema_extra={"internal": True})


SUPER_CALLER = CallerContext("root", frozenset(), True)
USER_CALLER = CallerContext("alice", frozenset({"read:courses", "write:courses"}), False)


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


def make_registry() -> SchemaRegistry:
    registry = SchemaRegistry()
    registry.add_schema("course", Course)
    return registry


class BaseTest(unittest.TestCase):
    """
    A base class for unit tests which prevents the usage of any existing config file

    If a subclass needs special setup or teardown functionality, it **MUST**
    call the superclasses setup and teardown methods: the superclass setup
    method at the beginning of the subclass setup method, the superclass
    teardown method at the end of the subclass teardown method.
    """

    config_file: Optional[str] = None

    def setUp(self) -> None:
        self.config_file = f"config_{os.getpid()}_{secrets.token_hex(8)}.json"
        self._old_config_paths = _settings.CONFIG_PATHS
        _settings.CONFIG_PATHS = [self.config_file]

    def tearDown(self) -> None:
        _settings.CONFIG_PATHS = self._old_config_paths
        if self.config_file and os.path.exists(self.config_file):
            os.remove(self.config_file)


class BaseAsyncTest(unittest.IsolatedAsyncioTestCase):
    """
    A base class for unit tests of coroutines, which provides a fresh store and registry
    """

    def setUp(self) -> None:
        self.store = MemoryStore()
        self.registry = make_registry()


class Courses(ResourceModule):
    root = "/courses"
    collection_name = "courses"
    schema_name = "course"


class BaseAPITests(BaseTest):
    """
    A base class for unit tests of the whole API using the ``TestClient`` of FastAPI
    """

    secret: str = "unittest-secret"
    token: Optional[str] = None

    def make_settings(self, **general) -> _settings.Settings:
        general.setdefault("default_page_size", conf.DEFAULT_PAGE_SIZE)
        general.setdefault("max_page_size", conf.MAX_PAGE_SIZE)
        return _settings.Settings(
            general=config.GeneralConfig(**general),
            auth=config.AuthConfig(secret=self.secret),
            database=config.DatabaseConfig(connection="memory://")
        )

    def setUp(self) -> None:
        super().setUp()
        self.store = MemoryStore()
        self.registry = make_registry()
        self.settings = self.make_settings()
        self.app = create_app(
            self.settings,
            modules=[Courses],
            store=self.store,
            registry=self.registry,
            configure_logging=False
        )
        self.module: ResourceModule = self.app.state.resources[0]
        self.client = TestClient(self.app, raise_server_exceptions=False)
        self.token = self.make_token(["read:courses", "write:courses", "read:schema"])

    def tearDown(self) -> None:
        self.client.close()
        super().tearDown()

    def make_token(self, scopes: Iterable[str], user: str = "alice", is_super: bool = False) -> str:
        return create_access_token(user, scopes, self.secret, is_super=is_super)

    def assertQuery(
            self,
            endpoint: Tuple[str, str],
            status_code: int = 200,
            json: Optional[Any] = None,
            token: Optional[str] = None,
            r_none: bool = False,
            r_headers: Optional[Union[Mapping, Iterable]] = None,
            **kwargs
    ):
        """
        Do a query to the specified endpoint and return the response

        :param endpoint: tuple of the method and the path of the endpoint
        :param status_code: asserted status code of the response
        :param json: optional JSON data of the request
        :param token: optional bearer token (uses the default token if omitted, no token if empty)
        :param r_none: switch to expect no (=empty) result
        :param r_headers: optional set of headers which are asserted in the response, either an
            iterable to only assert certain keys or a mapping to also assert values
        :param kwargs: dict of any further keyword arguments, passed to the test client
        :return: response to the requested resource
        """

        method, path = endpoint
        headers = kwargs.pop("headers", {})
        token = self.token if token is None else token
        if token:
            headers["Authorization"] = f"Bearer {token}"
        response = self.client.request(method.upper(), path, json=json, headers=headers, **kwargs)
        self.assertEqual(status_code, response.status_code, response.text)

        if r_headers is not None:
            for k in (r_headers.keys() if isinstance(r_headers, Mapping) else r_headers):
                self.assertIsNotNone(response.headers.get(k), response.headers)
                if isinstance(r_headers, Mapping):
                    self.assertEqual(r_headers[k], response.headers.get(k), response.headers)

        if r_none:
            self.assertEqual("", response.text)
        return response
