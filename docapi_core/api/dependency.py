"""
docapi request context library
"""

import copy
import json
import logging
import dataclasses
from typing import Any, Dict, Mapping, Optional

from fastapi import Request

from .base import ConfigurationError, SchemaValidationError
from .routes import RouteDefinition, Verb


logger = logging.getLogger(__name__)


@dataclasses.dataclass
class RequestContext:
    """
    Collection of all request-specific values the dispatcher works with

    One instance is created per request and is never shared. The `query`
    contains the query string parameters merged with the path parameters,
    the `data` contains the decoded JSON body (or ``None`` without body).
    """

    collection_name: str
    schema_name: Optional[str]
    query: Dict[str, Any]
    data: Optional[Dict[str, Any]]
    modifying: bool
    config: RouteDefinition
    verb: Verb
    path_params: Dict[str, Any] = dataclasses.field(default_factory=dict)


class RequestContextBuilder:
    """
    Build request contexts for the routes of one resource module

    :param collection_name: default collection name of the resource module
    :param schema_name: default schema name of the resource module
    """

    def __init__(self, collection_name: Optional[str], schema_name: Optional[str] = None):
        self.collection_name = collection_name
        self.schema_name = schema_name

    def build(
            self,
            route: RouteDefinition,
            verb: Verb,
            path_params: Optional[Mapping[str, Any]] = None,
            query_params: Optional[Mapping[str, Any]] = None,
            body: Any = None
    ) -> RequestContext:
        """
        Create a new request context from the route configuration and the request parameters

        :raises ConfigurationError: when neither route nor module define a collection
        :raises SchemaValidationError: when a body was given but isn't a JSON object
        """

        verb = Verb.parse(verb)
        collection_name = route.collection_name or self.collection_name
        if not collection_name:
            raise ConfigurationError(f"No collection name available for route {route.path!r}")
        schema_name = route.schema_name or self.schema_name

        if body is not None and not isinstance(body, dict):
            raise SchemaValidationError(
                schema_name,
                [{"loc": [], "msg": f"Request body must be a JSON object, not {type(body).__name__}"}]
            )

        path_params = dict(path_params or {})
        query = dict(query_params or {})
        query.update(path_params)

        return RequestContext(
            collection_name=collection_name,
            schema_name=schema_name,
            query=query,
            data=copy.deepcopy(body),
            modifying=route.is_modifying(verb),
            config=route,
            verb=verb,
            path_params=path_params
        )

    async def from_request(self, route: RouteDefinition, verb: Verb, request: Request) -> RequestContext:
        raw_body = await request.body()
        body = None
        if raw_body:
            try:
                body = json.loads(raw_body)
            except ValueError as exc:
                raise SchemaValidationError(
                    route.schema_name or self.schema_name,
                    [{"loc": [], "msg": f"Request body is not valid JSON: {exc}"}]
                ) from exc
        return self.build(route, verb, request.path_params, request.query_params, body)
