"""
docapi core REST API definitions

Every resource module exposes a collection of JSON documents below its
root path. Take a look into the individual resources for the available
operations; the JSON schema of each resource is served by `GET <root>/schema`.
"""

import logging.config
import contextlib
from typing import Callable, Dict, Iterable, Optional, Type, Union

import fastapi
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from . import base
from .auth import PermissionEngine
from .module import ResourceModule
from .. import schemas, __version__
from ..misc.notifier import Callback
from ..persistence import database
from ..persistence.store import DocumentStore, MemoryStore, SQLStore
from ..schemas import config
from ..schemas.engine import SchemaRegistry
from ..settings import Settings


DEFAULT_EXCEPTION_HANDLERS = {
    StarletteHTTPException: base.APIException.handle,
    RequestValidationError: base.handle_request_validation_error,
    Exception: base.handle_generic_exception
}

MEMORY_STORE_CONNECTION = "memory://"


API_DOC = """docapi core REST API

This API requires authentication using JSON web tokens, which should be
included in the `Authorization` header with the type `Bearer`. The token
must carry the permission scopes of the requested operation, e.g.
`read:courses` to read and `write:courses` to modify documents of the
resource `/courses`, or `read:schema` to get the JSON schema of a resource.

Lists of documents are paginated. Use the `limit` and `page` query
parameters to select a page; the response headers `X-Adapt-Page`,
`X-Adapt-PageSize` and `X-Adapt-PageTotal` describe the current page,
while the `Link` header contains the URLs of the neighbouring pages.

All error responses use the schema of the `APIError`. The following `4xx`
error responses are used in the API code:

1. The `400` (Bad Request) error response is returned for invalid request
   data, e.g. documents that fail validation against the resource schema.
   The `problems` field then lists all field-level problems.
2. The `401` (Unauthorized) error response is returned whenever the token
   is missing, has already expired or is otherwise invalid.
3. The `403` (Forbidden) error response is returned if the token lacks
   the required scopes or the access check of a document failed.
4. The `404` (Not Found) error response is returned whenever a document
   with the requested ID can't be found.
5. The `409` (Conflict) error response is returned when a document with
   the same ID already exists.
"""


def create_store(database_config: config.DatabaseConfig) -> DocumentStore:
    if database_config.connection == MEMORY_STORE_CONNECTION:
        return MemoryStore()
    database.init(database_config.connection, database_config.debug_sql)
    return SQLStore()


def create_app(
        settings: Optional[Settings] = None,
        modules: Optional[Iterable[Union[ResourceModule, Type[ResourceModule]]]] = None,
        store: Optional[DocumentStore] = None,
        registry: Optional[SchemaRegistry] = None,
        configure_logging: bool = True,
        exception_handlers: Optional[Dict[Type[Exception], Callable]] = None
) -> fastapi.FastAPI:
    """
    Create a new ``FastAPI`` instance using the specified settings and resource modules

    This function is conveniently used to allow overwriting the settings
    before launching the application as well as to allow multiple ``FastAPI``
    instances in one program, which in turn makes unit testing much easier.

    :param settings: optional Settings instance (would be created if not present)
    :param modules: resource modules (instances or subclasses) served in addition
        to the resources of the ``resources`` section of the settings
    :param store: optional document store (created from the database settings otherwise)
    :param registry: optional schema registry shared by all resource modules
    :param configure_logging: switch whether to configure logging
    :param exception_handlers: optional mapping of exception classes to handlers
    :return: new ``FastAPI`` instance
    """

    if settings is None:
        settings = Settings()

    if configure_logging:
        logging.config.dictConfig(settings.logging.model_dump())
    logger = logging.getLogger(__name__)
    logger.debug("Starting application...")

    if store is None:
        store = create_store(settings.database)
    if registry is None:
        registry = SchemaRegistry()
    permissions = PermissionEngine.from_config(settings.auth)
    notifier = Callback(settings.general.callbacks, logger) if settings.general.callbacks else None

    @contextlib.asynccontextmanager
    async def lifespan(_: fastapi.FastAPI):
        logger.info("Starting API...")
        yield
        logger.info("Shutting down...")
        await Callback.shutdown()

    app = base.APIWithoutValidationError(
        title="docapi core REST API",
        version=__version__,
        description=API_DOC,
        responses={400: {"model": schemas.APIError}},
        lifespan=lifespan
    )

    handlers = exception_handlers or DEFAULT_EXCEPTION_HANDLERS
    for exc in handlers:
        app.add_exception_handler(exc, handlers[exc])

    resources = [
        ResourceModule.from_config(resource, store, registry, settings.general)
        for resource in settings.resources
    ]
    for module in modules or []:
        if isinstance(module, type):
            module = module(store, registry, settings.general)
        resources.append(module)

    for module in resources:
        if notifier is not None:
            notifier.attach(module.hooks, module.collection_name)
        module.mount(app, permissions)
        logger.debug(f"Mounted resource {module.collection_name!r} at {module.root!r}")

    app.state.resources = resources
    app.state.permissions = permissions
    return app


class APIWrapper:
    """
    Wrapper class around the FastAPI main object, accessible via the ``app`` property

    There should be only one global instance of this object, which should only
    export its functionality to hold the ``app`` property. This wrapper can be
    used to allow easy command-line usage via ``uvicorn`` calls. Example:

    .. code-block::

        uvicorn docapi_core.api.api:api.app
    """

    def __init__(self):
        self._app: Optional[fastapi.FastAPI] = None

    def get_app(self) -> fastapi.FastAPI:
        return self.app

    def set_app(self, application: fastapi.FastAPI):
        if not isinstance(application, fastapi.FastAPI):
            raise TypeError
        self._app = application

    @property
    def app(self) -> fastapi.FastAPI:
        """
        Return the ``app`` instance (or create it with default settings if it doesn't exist)
        """

        if self._app is not None:
            return self._app
        self._app = create_app()
        return self._app


api = APIWrapper()
