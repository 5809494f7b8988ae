"""
docapi callback library to handle remote push notifications
"""

import asyncio
import logging
import datetime
from typing import ClassVar, Iterable, List, Optional, Set

import aiohttp

from .hooks import HookRegistry
from .logger import enforce_logger
from .. import schemas


CALLBACK_TIMEOUT = 2


class Callback:
    """
    Push notifications (HTTP callbacks) about changed documents to a list of URLs

    The notifications are sent in the background, so the request which
    triggered the event doesn't wait for the remote servers. Failing
    callbacks are logged and never retried.
    """

    client_session: ClassVar[Optional[aiohttp.ClientSession]] = None

    def __init__(self, urls: Iterable[str], logger: Optional[logging.Logger] = None):
        self.urls: List[str] = list(urls)
        self.logger = enforce_logger(logger)
        self._tasks: Set[asyncio.Task] = set()

    @classmethod
    def _init(cls):
        if cls.client_session is None:
            cls.client_session = aiohttp.ClientSession()

    @classmethod
    async def shutdown(cls):
        if cls.client_session is not None:
            await cls.client_session.close()
            cls.client_session = None

    async def _publish_event(self, events: List[schemas.Event], url: str):
        events_notification = schemas.EventsNotification(events=events, number=len(events))
        try:
            response = await self.client_session.post(
                url,
                json=events_notification.model_dump(mode="json"),
                timeout=aiohttp.ClientTimeout(total=CALLBACK_TIMEOUT)
            )
            if response.status != 200:
                self.logger.warning(f"Callback for {url!r} failed with response code {response.status!r}")
        except aiohttp.ClientConnectionError as exc:
            self.logger.info(
                f"{type(exc).__name__} during callback to 'POST {url}' "
                f"with the following arguments: {', '.join(map(repr, exc.args))}"
            )
        except asyncio.TimeoutError:
            self.logger.warning(f"Timeout while trying 'POST {url}'")

    async def publish(self, *events: schemas.Event):
        self._init()
        self.logger.debug(f"Handling {len(events)} events for {len(self.urls)} callbacks ...")
        await asyncio.gather(*[self._publish_event(list(events), url) for url in self.urls])

    def push(self, event: schemas.EventType, collection: str, data: Optional[dict] = None):
        """
        Schedule the notification about one event without waiting for it
        """

        data = data or {}
        task = asyncio.get_running_loop().create_task(self.publish(schemas.Event(
            event=event,
            collection=collection,
            id=data.get("_id"),
            timestamp=int(datetime.datetime.now().timestamp()),
            data=data
        )))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def attach(self, hooks: HookRegistry, collection: str):
        """
        Add observers to the post hooks of a resource module to push its events
        """

        hooks.post_insert.tap(lambda doc, *_: self.push(schemas.EventType.CREATED, collection, doc))
        hooks.post_update.tap(lambda old, new, *_: self.push(schemas.EventType.UPDATED, collection, new))
        hooks.post_delete.tap(lambda doc, *_: self.push(schemas.EventType.DELETED, collection, doc))
