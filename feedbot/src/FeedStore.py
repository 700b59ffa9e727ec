"""Feed store backends.

Both backends return the same document::

    {"version": "2.0.0", "feeds": [...], "recorders": [...], "relays": [...]}

``HttpFeedStore`` reads it from the dashboard's ``/api/feeds`` endpoint,
``FileFeedStore`` from a local JSON file such as ``data/feeds.json``.
"""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any

from .Feed import Feed
from .HttpClient import HttpClient
from .errors import ConfigError

logger = logging.getLogger(__name__)


def parse_feeds(
    document: dict[str, Any], destination_chain_id: int, strict: bool = True
) -> list[Feed]:
    """Parse the ``feeds`` list of a store document.

    :param document: Store document.
    :param destination_chain_id: Chain id of the destination network.
    :param strict: Raise on the first invalid record instead of skipping it.
    :returns: Parsed feeds in store order.
    :raises ConfigError: If the document is malformed, or a record is invalid in strict mode.
    """
    if not isinstance(document, dict):
        raise ConfigError(f"Feed store document must be an object, got {type(document).__name__}")
    records = document.get("feeds") or []
    if not isinstance(records, list):
        raise ConfigError("Feed store 'feeds' must be a list")

    feeds: list[Feed] = []
    for record in records:
        try:
            feeds.append(Feed.from_dict(record, destination_chain_id))
        except ConfigError as e:
            if strict:
                raise
            logger.error(f"Skipping invalid feed record: {e}")
    return feeds


class FeedStore(ABC):
    """Source of the configured feeds.

    :ivar destination_chain_id: Chain id used to infer native feeds.
    """

    def __init__(self, destination_chain_id: int = 14) -> None:
        self.destination_chain_id = destination_chain_id

    async def load(self, strict: bool = False) -> list[Feed]:
        """Read and parse every feed in the store.

        :param strict: Raise on invalid records instead of skipping them.
        :raises ConfigError: If the document is malformed.
        :raises TransientError: If the store could not be reached.
        """
        return parse_feeds(await self.fetch_document(), self.destination_chain_id, strict)

    @abstractmethod
    async def fetch_document(self) -> dict[str, Any]:
        pass


class HttpFeedStore(FeedStore, HttpClient):
    """Feed store served over HTTP.

    :ivar base_url: Application URL, e.g. ``http://localhost:3000``.
    """

    def __init__(self, base_url: str, destination_chain_id: int = 14, **kwargs: Any) -> None:
        FeedStore.__init__(self, destination_chain_id)
        HttpClient.__init__(self, **kwargs)
        self.base_url = base_url.rstrip("/")

    async def fetch_document(self) -> dict[str, Any]:
        response = await self._get(f"{self.base_url}/api/feeds")
        try:
            return response.json()
        except ValueError as e:
            raise ConfigError(f"Feed store returned invalid JSON: {e}") from e


class FileFeedStore(FeedStore):
    """Feed store kept in a local JSON file.

    :ivar path: Path to the JSON document.
    """

    def __init__(self, path: str | Path, destination_chain_id: int = 14) -> None:
        super().__init__(destination_chain_id)
        self.path = Path(path)

    async def fetch_document(self) -> dict[str, Any]:
        try:
            with open(self.path, "r") as file:
                return json.load(file)
        except FileNotFoundError as e:
            raise ConfigError(f"Feed store file not found: {self.path}") from e
        except json.JSONDecodeError as e:
            raise ConfigError(f"Feed store file {self.path} is not valid JSON: {e}") from e
