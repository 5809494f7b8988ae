"""
Authentication and permission helper library for the core REST API
"""

import datetime
import logging
from typing import Callable, Dict, FrozenSet, Iterable, NamedTuple, Optional, Tuple, Union

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import jwt

from .base import UnauthorizedError
from .routes import Verb
from ..schemas import config


logger = logging.getLogger(__name__)


class CallerContext(NamedTuple):
    user: Optional[str]
    scopes: FrozenSet[str]
    is_super: bool = False


ANONYMOUS = CallerContext(None, frozenset(), False)


def create_access_token(
        username: str,
        scopes: Iterable[str],
        secret: str,
        is_super: bool = False,
        algorithm: str = "HS256",
        expiration_minutes: int = 120
) -> str:
    now = datetime.datetime.now(datetime.timezone.utc)
    return jwt.encode(
        {
            "exp": now + datetime.timedelta(minutes=expiration_minutes),
            "iat": now,
            "sub": username,
            "scopes": list(scopes),
            "super": is_super
        },
        secret,
        algorithm=algorithm
    )


class PermissionEngine:
    """
    Scope-based permission checks of bearer tokens (JSON web tokens)

    Routes are secured by registering the required scopes per path and verb
    during startup. Every request to such a route requires a valid token
    carrying all of those scopes. Tokens with the claim ``super`` bypass the
    scope checks. Routes without registered scopes are public, a token
    is optional there.
    """

    def __init__(self, secret: str, algorithm: str = "HS256"):
        self.secret = secret
        self.algorithm = algorithm
        self._scopes: Dict[Tuple[str, Verb], Tuple[str, ...]] = {}
        self._bearer = HTTPBearer(auto_error=False)

    @classmethod
    def from_config(cls, auth_config: config.AuthConfig) -> "PermissionEngine":
        return cls(auth_config.secret, auth_config.algorithm)

    def secure_route(self, path: str, verb: Union[str, Verb], scopes: Iterable[str]):
        key = (path, Verb.parse(verb))
        if key in self._scopes:
            logger.warning(f"Overwriting scopes of already secured route '{key[1].value} {path}'")
        self._scopes[key] = tuple(scopes)

    def get_scopes(self, path: str, verb: Union[str, Verb]) -> Tuple[str, ...]:
        return self._scopes.get((path, Verb.parse(verb)), ())

    def decode_token(self, token: str) -> CallerContext:
        credentials_exception = UnauthorizedError(
            message="Failed to validate token successfully",
            detail=f"token={token!r}",
            status_code=401,
            headers={"WWW-Authenticate": "Bearer"}
        )

        try:
            payload = jwt.decode(
                token,
                self.secret,
                algorithms=[self.algorithm],
                options={"require_exp": True, "require_iat": True}
            )
        except jwt.JWTError as exc:
            raise credentials_exception from exc

        username = payload.get("sub", None)
        if username is None:
            raise credentials_exception
        scopes = payload.get("scopes", [])
        if isinstance(scopes, str):
            scopes = scopes.split()
        return CallerContext(username, frozenset(scopes), bool(payload.get("super", False)))

    @staticmethod
    def check(caller: CallerContext, required: Iterable[str]):
        if caller.is_super:
            return
        missing = [scope for scope in required if scope not in caller.scopes]
        if missing:
            raise UnauthorizedError(
                message="Insufficient permissions to access this resource.",
                detail=f"missing scopes: {', '.join(missing)}"
            )

    def require(self, path: str, verb: Union[str, Verb]) -> Callable:
        """
        Return a FastAPI dependency resolving the caller of a request to the given route
        """

        async def check_auth_token(
                credentials: Optional[HTTPAuthorizationCredentials] = Depends(self._bearer)
        ) -> CallerContext:
            required = self.get_scopes(path, verb)
            if credentials is None:
                if not required:
                    return ANONYMOUS
                raise UnauthorizedError(
                    message="Missing bearer token",
                    status_code=401,
                    headers={"WWW-Authenticate": "Bearer"}
                )
            caller = self.decode_token(credentials.credentials)
            self.check(caller, required)
            return caller

        return check_auth_token
