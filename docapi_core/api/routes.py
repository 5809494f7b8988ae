"""
docapi route definitions describing the HTTP surface of one resource
"""

import enum
import types
import logging
import dataclasses
from typing import Any, Awaitable, Callable, Dict, Iterable, Iterator, List, Mapping, Optional, Tuple, Union

from .base import ConfigurationError, MethodNotSupportedError
from .helpers import http_method_to_action, replace_placeholders


logger = logging.getLogger(__name__)

Handler = Callable[..., Awaitable[Any]]


@enum.unique
class Verb(str, enum.Enum):
    GET = "GET"
    POST = "POST"
    PUT = "PUT"
    PATCH = "PATCH"
    DELETE = "DELETE"

    @classmethod
    def parse(cls, method: Union[str, "Verb"]) -> "Verb":
        """
        Return the verb for the given HTTP method or raise a MethodNotSupportedError
        """

        if isinstance(method, Verb):
            return method
        try:
            return cls(str(method).upper())
        except ValueError:
            raise MethodNotSupportedError(str(method)) from None

    @property
    def action(self) -> str:
        return http_method_to_action(self.value)


MODIFYING_VERBS = frozenset({Verb.POST, Verb.PUT, Verb.PATCH, Verb.DELETE})


def _freeze(mapping: Optional[Mapping], value_type: Callable = tuple) -> Mapping:
    frozen = {}
    for key, value in (mapping or {}).items():
        if callable(value) or isinstance(value, str):
            value = [value]
        frozen[Verb.parse(key)] = value_type(value)
    return types.MappingProxyType(frozen)


@dataclasses.dataclass(frozen=True)
class RouteDefinition:
    """
    Immutable description of one path of a resource: its handlers, scopes and flags

    Handlers and permissions are keyed by ``Verb``; plain HTTP method
    names and single handlers or scopes are accepted and normalized.
    """

    path: str
    handlers: Mapping[Verb, Tuple[Handler, ...]]
    permissions: Mapping[Verb, Tuple[str, ...]] = dataclasses.field(default_factory=dict)
    modifying: Optional[bool] = None
    modifiers: Optional[Tuple[Verb, ...]] = None
    validate: bool = True
    schema_name: Optional[str] = None
    collection_name: Optional[str] = None
    public: bool = False
    meta: Mapping[Verb, Dict[str, Any]] = dataclasses.field(default_factory=dict)

    def __post_init__(self):
        if not self.path.startswith("/"):
            object.__setattr__(self, "path", "/" + self.path)
        object.__setattr__(self, "handlers", _freeze(self.handlers))
        object.__setattr__(self, "permissions", _freeze(self.permissions))
        object.__setattr__(self, "meta", types.MappingProxyType({
            Verb.parse(k): dict(v) for k, v in (self.meta or {}).items()
        }))
        if self.modifiers is not None:
            object.__setattr__(self, "modifiers", tuple(Verb.parse(m) for m in self.modifiers))

    @property
    def verbs(self) -> List[Verb]:
        return list(self.handlers.keys())

    def is_modifying(self, verb: Verb) -> bool:
        """
        Determine whether a request with the given verb on this route modifies data

        An explicit `modifying` flag wins, then the list of `modifiers`,
        otherwise POST, PUT, PATCH and DELETE are considered modifying.
        """

        if self.modifying is not None:
            return self.modifying
        if self.modifiers is not None:
            return verb in self.modifiers
        return verb in MODIFYING_VERBS

    def get_handlers(self, verb: Union[str, Verb]) -> Tuple[Handler, ...]:
        verb = Verb.parse(verb)
        if verb not in self.handlers:
            raise MethodNotSupportedError(verb.value, f"No handler for {verb.value} {self.path}")
        return self.handlers[verb]


class RouteTable:
    """
    Ordered set of unique route definitions of one resource module

    Routes with a path that has already been defined are dropped with
    a warning. Every handled verb of a non-public route must have
    permission scopes, otherwise a ConfigurationError is raised.
    """

    def __init__(self, routes: Iterable[RouteDefinition]):
        unique: Dict[str, RouteDefinition] = {}
        for route in routes:
            if route.path in unique:
                logger.warning(f"Duplicate route {route.path!r} ignored; only the first definition is used.")
                continue
            unique[route.path] = route

        for route in unique.values():
            if route.public:
                continue
            missing = [verb.value for verb in route.verbs if not route.permissions.get(verb)]
            if missing:
                raise ConfigurationError(f"Route {route.path!r} has no permissions for: {', '.join(missing)}")

        self._routes: Tuple[RouteDefinition, ...] = tuple(unique.values())

    def __iter__(self) -> Iterator[RouteDefinition]:
        return iter(self._routes)

    def __len__(self) -> int:
        return len(self._routes)

    def find(self, path: str) -> Optional[RouteDefinition]:
        for route in self._routes:
            if route.path == path:
                return route
        return None


def default_routes(
        root: str,
        request_handler: Handler,
        query_handler: Handler,
        schema_handler: Handler,
        permissions_scope: Optional[str] = None
) -> List[RouteDefinition]:
    """
    Generate the default route configuration of a resource

    * ``POST /`` and ``GET /`` to create and list documents
    * ``GET /schema`` to retrieve the schema of the resource
    * ``POST /query`` to run advanced queries with pagination
    * ``GET``, ``PUT``, ``PATCH`` and ``DELETE /{_id}`` for single documents
    """

    scope = permissions_scope or root.strip("/")
    if not scope:
        raise ConfigurationError("Either a root other than '/' or a permissions scope is required")

    def scopes(*verbs: Verb) -> Dict[Verb, Tuple[str, ...]]:
        return {verb: (f"{verb.action}:{scope}",) for verb in verbs}

    return [
        RouteDefinition(
            path="/",
            handlers={Verb.POST: request_handler, Verb.GET: request_handler},
            permissions=scopes(Verb.POST, Verb.GET),
            modifiers=(Verb.POST,)
        ),
        RouteDefinition(
            path="/schema",
            handlers={Verb.GET: schema_handler},
            permissions={Verb.GET: ("read:schema",)},
            modifying=False,
            validate=False
        ),
        RouteDefinition(
            path="/query",
            handlers={Verb.POST: query_handler},
            permissions={Verb.POST: (f"read:{scope}",)},
            modifying=False,
            validate=False
        ),
        RouteDefinition(
            path="/{_id}",
            handlers={verb: request_handler for verb in (Verb.GET, Verb.PUT, Verb.PATCH, Verb.DELETE)},
            permissions=scopes(Verb.GET, Verb.PUT, Verb.PATCH, Verb.DELETE),
            modifiers=(Verb.PUT, Verb.PATCH, Verb.DELETE)
        )
    ]


_VERB_SUMMARIES = {
    Verb.PUT: "Replace",
    Verb.GET: "Retrieve",
    Verb.PATCH: "Update",
    Verb.DELETE: "Delete",
    Verb.POST: "Insert"
}

_PAGINATION_DESCRIPTION = (
    "Use the `limit` query parameter to set how many results should be returned (default "
    "$DEFAULT_PAGE_SIZE, max $MAX_PAGE_SIZE) and `page` to select the page of results."
)


def generate_api_metadata(
        routes: Iterable[RouteDefinition],
        schema_name: Optional[str],
        collection_name: str,
        default_page_size: int,
        max_page_size: int
) -> List[RouteDefinition]:
    """
    Return copies of the default routes with summary and description metadata per verb

    Routes that already carry metadata and unknown paths are returned unchanged.
    """

    replacements = {
        "$SCHEMA": schema_name or collection_name,
        "$COLLECTION": collection_name,
        "$DEFAULT_PAGE_SIZE": str(default_page_size),
        "$MAX_PAGE_SIZE": str(max_page_size)
    }

    result = []
    for route in routes:
        if route.meta:
            result.append(route)
            continue
        meta = {}
        for verb in route.verbs:
            if route.path == "/" and verb == Verb.POST:
                meta[verb] = {"summary": f"{_VERB_SUMMARIES[verb]} a new $SCHEMA document"}
            elif route.path == "/":
                meta[verb] = {"summary": "Retrieve all $COLLECTION documents", "description": _PAGINATION_DESCRIPTION}
            elif route.path == "/{_id}":
                meta[verb] = {"summary": f"{_VERB_SUMMARIES[verb]} an existing $SCHEMA document"}
            elif route.path == "/query":
                meta[verb] = {"summary": "Query all $COLLECTION", "description": _PAGINATION_DESCRIPTION}
            elif route.path == "/schema":
                meta[verb] = {"summary": "Retrieve $SCHEMA schema"}
        result.append(dataclasses.replace(route, meta=replace_placeholders(meta, replacements)))
    return result
