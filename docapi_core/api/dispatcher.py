"""
docapi request dispatcher mapping HTTP verbs onto CRUD operations
"""

import logging
from typing import Any, Dict, List, Optional, Tuple

from fastapi import Response
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from .base import InternalConsistencyError, MethodNotSupportedError, NotFoundError
from .crud import CrudOperations
from .dependency import RequestContext
from .query import QueryEngine
from .routes import Verb
from ..misc.access import AccessController
from ..schemas.engine import Validator


logger = logging.getLogger(__name__)

VERB_OPERATIONS = {
    Verb.POST: "insert",
    Verb.GET: "find",
    Verb.PUT: "replace",
    Verb.PATCH: "update",
    Verb.DELETE: "delete"
}

STATUS_CODES = {
    Verb.POST: 201,
    Verb.GET: 200,
    Verb.PUT: 200,
    Verb.PATCH: 200,
    Verb.DELETE: 204
}


def get_operation(verb: Any) -> str:
    try:
        return VERB_OPERATIONS[Verb.parse(verb)]
    except KeyError:
        raise MethodNotSupportedError(str(verb)) from None


def build_arguments(ctx: RequestContext) -> List[Any]:
    """
    Return the positional arguments of the CRUD operation for the request
    """

    if ctx.verb in (Verb.GET, Verb.DELETE):
        return [ctx.query]
    if ctx.verb == Verb.POST:
        return [ctx.data or {}]
    if ctx.verb in (Verb.PUT, Verb.PATCH):
        return [ctx.query, ctx.data or {}]
    raise MethodNotSupportedError(ctx.verb.value)


def contract(result: List[Any], doc_id: Any) -> Any:
    """
    Reduce a list of results for a single document request to the document itself
    """

    if len(result) == 0:
        raise NotFoundError(f"Document {doc_id}")
    if len(result) > 1:
        raise InternalConsistencyError(f"Found {len(result)} documents with ID {doc_id!r}", str(result))
    return result[0]


class RequestDispatcher:
    """
    Run the CRUD operation of a request and emit the response

    Requests for single documents (with ``_id`` in the path) are contracted
    to exactly one document. Non-privileged callers are checked against the
    access hook before documents are modified and after they were read.
    """

    def __init__(
            self,
            crud: CrudOperations,
            access: AccessController,
            query_engine: QueryEngine,
            validator: Validator
    ):
        self.crud = crud
        self.access = access
        self.query_engine = query_engine
        self.validator = validator

    @staticmethod
    def _options(ctx: RequestContext) -> Dict[str, Any]:
        return {
            "schema_name": ctx.schema_name,
            "collection_name": ctx.collection_name,
            "validate": ctx.config.validate
        }

    async def pre_check(self, ctx: RequestContext, caller: Any):
        """
        Check access to the document targeted by a modifying request

        Nothing is checked if no document matches, the CRUD
        operation will report the missing document afterwards.
        """

        if self.access.skip_for(caller):
            return
        docs = await self.crud.store.find(ctx.collection_name, ctx.query, {"limit": 1})
        if docs:
            await self.access.check_access(caller, docs[0])

    async def find_page(
            self,
            query: Dict[str, Any],
            options: Dict[str, Any],
            url: str
    ) -> Tuple[List[Any], Dict[str, str]]:
        store_options = {}
        flt = await self.query_engine.parse_query(options.get("schema_name"), query, store_options)
        count = await self.crud.store.count(options["collection_name"], flt)
        store_options, headers = self.query_engine.paginate(url, store_options, count)
        result = await self.crud.find(flt, {**options, "normalize_query": False}, store_options)
        return result, headers

    async def respond(self, ctx: RequestContext, result: Any, headers: Optional[Dict[str, str]] = None) -> Response:
        status_code = STATUS_CODES[ctx.verb]
        if status_code == 204:
            return Response(status_code=status_code, headers=headers)
        result = await self.validator.sanitize(ctx.schema_name, result)
        return JSONResponse(jsonable_encoder(result), status_code=status_code, headers=headers)

    async def dispatch(self, ctx: RequestContext, caller: Any, url: str) -> Response:
        """
        Execute the CRUD operation belonging to the request context

        :param ctx: request context as created by the ``RequestContextBuilder``
        :param caller: context of the requesting identity
        :param url: full request URL, used for the pagination links
        :return: response with the sanitized result and the status code of the verb
        """

        operation = get_operation(ctx.verb)
        options = self._options(ctx)
        headers = None

        if ctx.verb in (Verb.PUT, Verb.PATCH, Verb.DELETE):
            await self.pre_check(ctx, caller)

        if ctx.verb == Verb.GET and "_id" not in ctx.path_params:
            result, headers = await self.find_page(ctx.query, options, url)
            result = await self.access.check_access(caller, result)
        else:
            result = await getattr(self.crud, operation)(*build_arguments(ctx), options)

        if ctx.verb == Verb.GET and "_id" in ctx.path_params:
            result = contract(result, ctx.path_params["_id"])
            result = await self.access.check_access(caller, result)

        return await self.respond(ctx, result, headers)

    async def query(self, ctx: RequestContext, caller: Any, url: str) -> Response:
        """
        Run an advanced query with the request body as filter, merged with the query string

        The response always uses status code 200, even though it's a POST request.
        """

        raw_query = {**ctx.query, **(ctx.data or {})}
        result, headers = await self.find_page(raw_query, self._options(ctx), url)
        result = await self.access.check_access(caller, result)
        result = await self.validator.sanitize(ctx.schema_name, result)
        return JSONResponse(jsonable_encoder(result), status_code=200, headers=headers)
