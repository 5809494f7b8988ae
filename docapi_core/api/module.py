"""
docapi resource modules composing routes, hooks, cache and dispatcher of one resource
"""

import logging
import importlib
from typing import Iterable, List, Optional, Type

import pydantic
from fastapi import Depends, FastAPI, Request, Response
from fastapi.responses import JSONResponse

from .auth import CallerContext, PermissionEngine
from .base import ConfigurationError, InternalConsistencyError, NotFoundError
from .crud import CrudOperations
from .dependency import RequestContext, RequestContextBuilder
from .dispatcher import STATUS_CODES, RequestDispatcher
from .query import QueryEngine
from .routes import RouteDefinition, RouteTable, Verb, default_routes, generate_api_metadata
from .. import schemas
from ..misc.access import AccessController
from ..misc.cache import ResultCache
from ..misc.hooks import HookRegistry
from ..persistence.store import DocumentStore
from ..schemas import config
from ..schemas.engine import SchemaRegistry, Validator


def import_schema(path: str) -> Type[pydantic.BaseModel]:
    """
    Import a schema model by its path in the form ``package.module:Model``
    """

    module_name, _, attr = path.partition(":")
    if not module_name or not attr:
        raise ConfigurationError(f"Invalid schema path {path!r}, expected 'package.module:Model'")
    try:
        module = importlib.import_module(module_name)
    except ImportError as exc:
        raise ConfigurationError(f"Schema module {module_name!r} can't be imported: {exc}") from exc
    model = getattr(module, attr, None)
    if not isinstance(model, type) or not issubclass(model, pydantic.BaseModel):
        raise ConfigurationError(f"Schema {path!r} is not a pydantic model")
    return model


class ResourceModule:
    """
    Generic REST resource exposing CRUD operations on one collection of documents

    Subclass this class and set the class attributes (at least ``root`` and
    ``collection_name``) or pass the values to the constructor. The method
    ``setup_hooks`` can be overwritten to attach observers to the hooks.
    Example:

    .. code-block::

        class Courses(ResourceModule):
            root = "/courses"
            collection_name = "courses"
            schema = Course

            def setup_hooks(self):
                self.hooks.pre_insert.tap(lambda data, options: {**data, "state": "new"})

    Each instance owns exactly one hook registry, one result cache and
    one request dispatcher, so two modules never share any state.
    """

    root: Optional[str] = None
    collection_name: Optional[str] = None
    schema_name: Optional[str] = None
    schema: Optional[Type[pydantic.BaseModel]] = None
    permissions_scope: Optional[str] = None
    routes: Optional[List[RouteDefinition]] = None
    cache_config: Optional[config.CacheConfig] = None

    def __init__(
            self,
            store: DocumentStore,
            registry: SchemaRegistry,
            general: Optional[config.GeneralConfig] = None,
            root: Optional[str] = None,
            collection_name: Optional[str] = None,
            schema_name: Optional[str] = None,
            schema: Optional[Type[pydantic.BaseModel]] = None,
            permissions_scope: Optional[str] = None,
            routes: Optional[Iterable[RouteDefinition]] = None,
            cache_config: Optional[config.CacheConfig] = None
    ):
        self.logger = logging.getLogger(f"{__name__}.{type(self).__name__}")
        self.store = store
        self.registry = registry
        self.general = general or config.GeneralConfig()

        self.set_values(root, collection_name, schema_name, schema, permissions_scope, routes, cache_config)
        self.use_default_route_config()
        self.validate_values()

        self.hooks = HookRegistry()
        self.validator = Validator(registry)
        self.cache = ResultCache(
            store,
            enable=self.cache_config.enable,
            lifespan=self.general.default_cache_lifespan
            if self.cache_config.lifespan is None else self.cache_config.lifespan
        )
        self.access = AccessController(self.hooks.access_check)
        self.query_engine = QueryEngine(self.validator, self.general.default_page_size, self.general.max_page_size)
        self.crud = CrudOperations(
            store, self.validator, self.hooks, self.cache, self.query_engine, self.schema_name, self.collection_name
        )
        self.dispatcher = RequestDispatcher(self.crud, self.access, self.query_engine, self.validator)
        self.builder = RequestContextBuilder(self.collection_name, self.schema_name)
        self.route_table = RouteTable(generate_api_metadata(
            self.routes,
            self.schema_name,
            self.collection_name,
            self.general.default_page_size,
            self.general.max_page_size
        ))

        if self.cache_config.invalidate_on_write:
            for hook in (self.hooks.post_insert, self.hooks.post_update, self.hooks.post_delete):
                hook.tap(self.cache.clear)
        self.setup_hooks()

    def set_values(self, root, collection_name, schema_name, schema, permissions_scope, routes, cache_config):
        self.root = root or self.root
        self.collection_name = collection_name or self.collection_name
        self.schema = schema or self.schema
        self.schema_name = schema_name or self.schema_name
        self.permissions_scope = permissions_scope or self.permissions_scope
        self.routes = list(routes) if routes is not None else self.routes
        self.cache_config = cache_config or self.cache_config or config.CacheConfig()

        if self.root is not None and not self.root.startswith("/"):
            self.root = "/" + self.root
        if self.root is not None:
            self.root = self.root.rstrip("/") or "/"
        if self.schema is not None:
            self.schema_name = self.schema_name or self.collection_name
            self.registry.add_schema(self.schema_name, self.schema)

    def use_default_route_config(self):
        if self.routes is None and self.root is not None:
            self.routes = default_routes(
                self.root,
                self.handle_request,
                self.handle_query,
                self.serve_schema,
                self.permissions_scope
            )

    def validate_values(self):
        if not self.root:
            raise ConfigurationError(f"{type(self).__name__} requires a root path")
        if not self.collection_name:
            raise ConfigurationError(f"{type(self).__name__} requires a collection name")
        if not self.routes:
            raise ConfigurationError(f"{type(self).__name__} requires at least one route")
        if self.schema_name is not None and self.schema_name not in self.registry:
            raise ConfigurationError(f"Schema {self.schema_name!r} of {type(self).__name__} is not registered")

    def setup_hooks(self):
        pass

    @classmethod
    def from_config(
            cls,
            resource: config.ResourceConfig,
            store: DocumentStore,
            registry: SchemaRegistry,
            general: Optional[config.GeneralConfig] = None
    ) -> "ResourceModule":
        return cls(
            store,
            registry,
            general,
            root=resource.root,
            collection_name=resource.collection_name,
            schema_name=resource.schema_name,
            schema=import_schema(resource.schema_path) if resource.schema_path else None,
            permissions_scope=resource.permissions_scope,
            cache_config=resource.cache
        )

    def get_full_path(self, route: RouteDefinition) -> str:
        if route.path == "/":
            return self.root
        return self.root.rstrip("/") + route.path

    async def handle_request(self, request: Request, ctx: RequestContext, caller: CallerContext) -> Response:
        """
        Run the request hook, strip read-only fields of incoming data and dispatch the request
        """

        ctx = await self.hooks.request.invoke(ctx, caller, request)
        if ctx.modifying and ctx.config.validate and ctx.data:
            ctx.data = await self.validator.sanitize(ctx.schema_name, ctx.data, strip_read_only=True)
        return await self.dispatcher.dispatch(ctx, caller, str(request.url))

    async def handle_query(self, request: Request, ctx: RequestContext, caller: CallerContext) -> Response:
        ctx = await self.hooks.request.invoke(ctx, caller, request)
        return await self.dispatcher.query(ctx, caller, str(request.url))

    async def serve_schema(self, request: Request, ctx: RequestContext, caller: CallerContext) -> Response:
        schema = await self.validator.get_schema(ctx.schema_name)
        if schema is None:
            raise NotFoundError(f"Schema of {ctx.collection_name}")
        return JSONResponse(schema.json_schema(), media_type="application/schema+json")

    def _make_endpoint(self, route: RouteDefinition, verb: Verb, permissions: PermissionEngine):
        async def endpoint(
                request: Request,
                caller: CallerContext = Depends(permissions.require(self.get_full_path(route), verb))
        ) -> Response:
            ctx = await self.builder.from_request(route, verb, request)
            for handler in route.get_handlers(verb):
                response = await handler(request, ctx, caller)
                if response is not None:
                    return response
            raise InternalConsistencyError(f"No handler of '{verb.value} {request.url.path}' returned a response")

        endpoint.__name__ = f"{self.collection_name}_{verb.value.lower()}_{route.path.strip('/') or 'root'}"
        return endpoint

    def mount(self, app: FastAPI, permissions: PermissionEngine):
        """
        Register all routes of this module with the permission engine and the application
        """

        for route in self.route_table:
            path = self.get_full_path(route)
            for verb in route.verbs:
                if not route.public:
                    permissions.secure_route(path, verb, route.permissions[verb])
                meta = route.meta.get(verb, {})
                app.add_api_route(
                    path,
                    self._make_endpoint(route, verb, permissions),
                    methods=[verb.value],
                    status_code=STATUS_CODES.get(verb, 200) if route.path != "/query" else 200,
                    summary=meta.get("summary"),
                    description=meta.get("description"),
                    tags=[self.collection_name],
                    responses={
                        401: {"model": schemas.APIError},
                        403: {"model": schemas.APIError},
                        404: {"model": schemas.APIError}
                    }
                )
                self.logger.debug(f"Mounted route '{verb.value} {path}'")
