"""
docapi access control for single documents and lists of documents
"""

import asyncio
import logging
from typing import Any, List, Optional

from .hooks import PredicateHook
from ..api.base import UnauthorizedError


logger = logging.getLogger(__name__)


class AccessController:
    """
    Filter documents through the access check hook of a resource module

    Lists are checked item by item: denied items and items whose check
    raised an exception are silently dropped, since a partial list is
    preferable to no list at all. A single document that is denied
    raises an ``UnauthorizedError`` instead. Without observers on the
    hook or for privileged callers, the data is passed through unchanged.
    """

    def __init__(self, hook: PredicateHook):
        self.hook = hook

    def skip_for(self, caller: Optional[Any]) -> bool:
        return not self.hook.has_observers or bool(getattr(caller, "is_super", False))

    async def _passes(self, caller: Any, item: Any) -> bool:
        try:
            return await self.hook.invoke(caller, item)
        except Exception as exc:
            logger.debug(f"Access check for {getattr(caller, 'user', caller)!r} raised {type(exc).__name__}: {exc}")
            return False

    async def check_access(self, caller: Any, data: Any):
        """
        Return the data (or the subset of the list) the caller may access

        :param caller: context of the requesting identity (must provide `is_super`)
        :param data: single document or list of documents
        :return: the single document or a list of accessible documents in the original order
        :raises UnauthorizedError: when a single document was denied
        """

        if self.skip_for(caller):
            return data

        if isinstance(data, list):
            results: List[bool] = await asyncio.gather(*[self._passes(caller, item) for item in data])
            return [item for item, allowed in zip(data, results) if allowed]

        try:
            allowed = await self.hook.invoke(caller, data)
        except UnauthorizedError:
            raise
        except Exception as exc:
            raise UnauthorizedError(detail=f"{type(exc).__name__}: {exc}") from exc
        if not allowed:
            raise UnauthorizedError(detail="Access check denied the requested item")
        return data
