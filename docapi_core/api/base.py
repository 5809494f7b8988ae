"""
docapi REST API base library
"""

import logging
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, HTTPException, Request, Response
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.openapi.utils import get_openapi
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from .. import schemas


logger = logging.getLogger(__name__)


class APIWithoutValidationError(FastAPI):
    """
    FastAPI class that excludes 422 validation error responses in OpenAPI schema
    """

    def openapi(self) -> Dict[str, Any]:
        if not self.openapi_schema:
            self.openapi_schema = get_openapi(
                title=self.title,
                version=self.version,
                openapi_version=self.openapi_version,
                description=self.description,
                terms_of_service=self.terms_of_service,
                contact=self.contact,
                license_info=self.license_info,
                routes=self.routes,
                tags=self.openapi_tags,
                servers=self.servers,
            )
            for path, operations in self.openapi_schema.get("paths", {}).items():
                for method, metadata in operations.items():
                    metadata.get("responses", {}).pop("422", None)
        return self.openapi_schema


async def handle_generic_exception(request: Request, _: Exception):
    logger.exception("Unhandled exception caught in base exception handler!")
    status_code = 500
    msg = "Unexpected server error. The requested action wasn't completed successfully."

    return JSONResponse(jsonable_encoder(schemas.APIError(
        status=status_code,
        method=request.method,
        request=request.url.path,
        repeat=False,
        message=msg,
        details=""
    )), status_code=status_code)


async def handle_request_validation_error(request: Request, exc: RequestValidationError):
    status_code = 400
    msgs = "\n".join(["\t" + error["msg"] for error in exc.errors()])
    message = f"Failed to process the request:\n{msgs}"

    return JSONResponse(jsonable_encoder(schemas.APIError(
        status=status_code,
        method=request.method,
        request=request.url.path,
        repeat=False,
        message=message,
        details=str(exc.errors())
    )), status_code=status_code)


class ConfigurationError(Exception):
    """
    Exception for a resource module that can't be set up (missing root, routes or collection)

    This error is raised during startup and prevents the module from becoming
    ready, so it's never translated into an HTTP response.
    """


class APIException(HTTPException):
    """
    Base class for any kind of generic API exception
    """

    def __init__(
            self,
            status_code: int,
            detail: Optional[str],
            repeat: bool = False,
            message: Optional[str] = None,
            headers: Optional[Dict[str, Any]] = None
    ):
        super().__init__(status_code=status_code, detail=detail, headers=headers)
        self.repeat = repeat
        self.message = message

    def __str__(self) -> str:
        return f"{self.status_code}: {self.message or self.detail}"

    @classmethod
    async def handle(cls, request: Request, exc: StarletteHTTPException) -> Response:
        """
        Handle exceptions in a generic way to produce APIError models
        """

        status_code = getattr(exc, "status_code", 500)
        repeat = getattr(exc, "repeat", False)
        message = getattr(exc, "message", None) or exc.__class__.__name__

        if not isinstance(exc, StarletteHTTPException):
            logger.error("Invalid exception class for base handler")

        logger.debug(
            f"{type(exc).__name__}: {message} @ '{request.method} "
            f"{request.url.path}' (details: {exc.detail})"
        )
        if status_code == 204 or status_code == 304:
            return Response(status_code=status_code, headers=getattr(exc, "headers", None))
        return JSONResponse(jsonable_encoder(schemas.APIError(
            status=status_code,
            method=request.method,
            request=request.url.path,
            repeat=repeat,
            message=message,
            details=str(exc.detail or ""),
            problems=getattr(exc, "problems", None)
        )), status_code=status_code, headers=getattr(exc, "headers", None))


class BadRequest(APIException):
    """
    Exception when the user probably messed something up

    The `message` field must be user-friendly and not too informative!
    """

    def __init__(self, message: str, detail: Optional[str] = None):
        super().__init__(
            status_code=400,
            detail=detail,
            repeat=True,
            message=message
        )


class SchemaValidationError(BadRequest):
    """
    Exception for request data that doesn't conform to the resource schema

    The field-level problems are kept in the `problems` attribute and
    are added to the error response, too.
    """

    def __init__(self, schema_name: Optional[str], problems: List[Dict[str, Any]], detail: Optional[str] = None):
        super().__init__(
            f"Data failed validation against schema {schema_name!r}.",
            detail or "; ".join(
                f"{'.'.join(map(str, p.get('loc', ()))) or '<root>'}: {p.get('msg', '')}" for p in problems
            )
        )
        self.schema_name = schema_name
        self.problems = problems


class UnauthorizedError(APIException):
    """
    Exception when the caller may not perform the requested action

    A missing or broken token yields 401, a veto of the
    access check or missing permission scopes yield 403.
    """

    def __init__(
            self,
            message: str = "You are not authorised to access this resource.",
            detail: Optional[str] = None,
            status_code: int = 403,
            headers: Optional[Dict[str, Any]] = None
    ):
        super().__init__(
            status_code=status_code,
            detail=detail,
            repeat=False,
            message=message,
            headers=headers
        )


class NotFoundError(APIException):
    """
    Exception when a requested resource was not found in the system
    """

    def __init__(self, resource: str, detail: Optional[str] = None):
        super().__init__(
            status_code=404,
            detail=detail,
            repeat=False,
            message=f"{str(resource)!r} was not found."
        )


class MethodNotSupportedError(APIException):
    """
    Exception when an HTTP method has no corresponding operation on the resource
    """

    def __init__(self, method: str, detail: Optional[str] = None):
        super().__init__(
            status_code=405,
            detail=detail,
            repeat=False,
            message=f"HTTP method {str(method).upper()!r} is not supported."
        )


class InternalConsistencyError(APIException):
    """
    Exception for states that should never happen, e.g. many documents where exactly one was expected
    """

    def __init__(self, message: str, detail: Optional[str] = None):
        super().__init__(
            status_code=500,
            detail=detail,
            repeat=False,
            message=message
        )
        logger.error(f"Internal consistency failure: {message} ({detail})")


class Conflict(APIException):
    """
    Exception when the requested operation collides with the current state, e.g. a duplicate `_id`
    """

    def __init__(self, message: str, detail: Optional[str] = None):
        super().__init__(
            status_code=409,
            detail=detail,
            repeat=False,
            message=message
        )
