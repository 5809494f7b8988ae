"""
docapi hook library providing extension points of the request lifecycle

There are three flavors of hooks, which all fire their observers in the
order of registration. Observers can be plain functions or coroutine functions.

* ``ChainableHook``: each observer receives the value returned by the previous
  observer (``None`` keeps the current value); exceptions propagate to the caller
* ``BroadcastHook``: all observers receive the same arguments and run
  concurrently; exceptions are logged and never propagate
* ``PredicateHook``: all observers are asked whether an item passes; any
  falsy answer rejects it, exceptions propagate to the caller
"""

import asyncio
import inspect
import logging
from typing import Any, Callable, List, Optional


logger = logging.getLogger(__name__)

Observer = Callable[..., Any]


class Hook:
    """
    Ordered collection of observers attached to one named lifecycle point
    """

    def __init__(self, name: str):
        self.name = name
        self._observers: List[Observer] = []

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r}, observers={len(self._observers)})"

    def __len__(self) -> int:
        return len(self._observers)

    @property
    def has_observers(self) -> bool:
        return len(self._observers) > 0

    def tap(self, observer: Observer) -> Observer:
        """
        Attach a new observer to the hook (usable as decorator, too)
        """

        if not callable(observer):
            raise TypeError(f"Observer of hook {self.name!r} must be callable, not {type(observer)}")
        self._observers.append(observer)
        return observer

    @staticmethod
    async def _call(observer: Observer, *args) -> Any:
        result = observer(*args)
        if inspect.isawaitable(result):
            result = await result
        return result


class ChainableHook(Hook):
    async def invoke(self, value: Any, *args) -> Any:
        """
        Fold the value through all observers and return the final value

        Any exception raised by an observer aborts the chain and propagates.
        """

        for observer in self._observers:
            result = await self._call(observer, value, *args)
            if result is not None:
                value = result
        return value


class BroadcastHook(Hook):
    async def invoke(self, *args) -> List[Any]:
        """
        Run all observers with the same arguments and return the results of the successful ones

        Failing observers are logged, since the action
        which triggered the hook has already been completed.
        """

        if not self._observers:
            return []
        results = await asyncio.gather(
            *[self._call(observer, *args) for observer in self._observers],
            return_exceptions=True
        )
        successful = []
        for observer, result in zip(self._observers, results):
            if isinstance(result, BaseException):
                logger.error(
                    f"Observer {getattr(observer, '__qualname__', observer)!r} of hook {self.name!r} "
                    f"failed: {type(result).__name__}: {result}",
                    exc_info=result
                )
            else:
                successful.append(result)
        return successful


class PredicateHook(Hook):
    async def invoke(self, *args) -> bool:
        """
        Ask all observers in series and return whether every single one approved
        """

        for observer in self._observers:
            if not await self._call(observer, *args):
                return False
        return True


class HookRegistry:
    """
    Set of all hooks owned by exactly one resource module

    The request hook receives the request context (and the raw request),
    the insert hook the data to be inserted, the update hook the new data
    and the original document, the delete hook the document to be deleted.
    The ``post_*`` hooks receive the affected documents after the store
    has completed the operation. The access check hook receives the caller
    and a single item and must return whether the caller may access it.
    """

    def __init__(self):
        self.request = ChainableHook("request")
        self.pre_insert = ChainableHook("pre_insert")
        self.post_insert = BroadcastHook("post_insert")
        self.pre_update = ChainableHook("pre_update")
        self.post_update = BroadcastHook("post_update")
        self.pre_delete = ChainableHook("pre_delete")
        self.post_delete = BroadcastHook("post_delete")
        self.access_check = PredicateHook("access_check")

    def __iter__(self):
        return iter([
            self.request,
            self.pre_insert,
            self.post_insert,
            self.pre_update,
            self.post_update,
            self.pre_delete,
            self.post_delete,
            self.access_check
        ])

    def get(self, name: str) -> Optional[Hook]:
        for hook in self:
            if hook.name == name:
                return hook
        return None
