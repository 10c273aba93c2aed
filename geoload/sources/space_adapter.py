from __future__ import annotations

import typing as t

from geoload.transport import TransportClient
from geoload.utils import get_logger

logger = get_logger(__name__)


def _exhausted(handle: t.Any) -> bool:
    if handle is None:
        return True
    try:
        return int(handle) < 0
    except (TypeError, ValueError):
        return False


class SpaceSource:
    """Pages through the features of a space using the store's handle cursor."""

    def __init__(
        self,
        transport: TransportClient,
        target_id: str,
        *,
        token: str,
        limit: int = 5000,
        handle: t.Optional[t.Union[int, str]] = None,
        tags: t.Optional[str] = None,
        total: int = 500000,
    ):
        self.transport = transport
        self.target_id = target_id
        self.token = token
        self.limit = limit
        self.handle = handle
        self.tags = tags
        self.total = total

    async def batches(self) -> t.AsyncIterator[t.List[dict]]:
        handle = self.handle
        fetched = 0
        while fetched < self.total:
            features, handle = await self.transport.iterate(
                self.target_id, token=self.token, limit=self.limit, handle=handle, tags=self.tags
            )
            if features:
                fetched += len(features)
                yield features
            if _exhausted(handle):
                break
        self.handle = handle
        logger.info("source.space id=%s features=%d handle=%s", self.target_id, fetched, handle)
