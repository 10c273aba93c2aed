from __future__ import annotations

import asyncio
import itertools
import json
import sys
import typing as t

import ijson

from geoload.errors import ValidationFailure
from geoload.utils import get_logger

logger = get_logger(__name__)


def _loads(text: str, where: str) -> t.Any:
    try:
        return json.loads(text)
    except json.JSONDecodeError as e:
        raise ValidationFailure(f"Empty or invalid JSON in {where}: {e}") from e


def _features_of(obj: t.Any) -> t.List[dict]:
    if isinstance(obj, dict) and obj.get("type") == "FeatureCollection":
        return list(obj.get("features") or [])
    return [obj]


def _take(items: t.Iterator[t.Any], n: int, where: str) -> t.List[t.Any]:
    try:
        return list(itertools.islice(items, n))
    except ijson.JSONError as e:
        raise ValidationFailure(f"Empty or invalid JSON in {where}: {e}") from e


def _load_document(path: str) -> t.Any:
    with open(path, "rb") as f:
        docs = _take(ijson.items(f, "", use_float=True), 1, path)
    if not docs:
        raise ValidationFailure(f"Empty or invalid JSON in {path}")
    return docs[0]


class GeoJsonFileSource:
    """A GeoJSON file holding a FeatureCollection or a single Feature.

    The ``features`` array is parsed incrementally, so only one chunk of
    records is held in memory at a time. Parsing runs in a worker thread.
    """

    def __init__(self, path: str, chunk: int = 1000):
        self.path = path
        self.chunk = chunk

    async def batches(self) -> t.AsyncIterator[t.List[dict]]:
        count = 0
        with open(self.path, "rb") as f:
            items = ijson.items(f, "features.item", use_float=True)
            while True:
                batch = await asyncio.to_thread(_take, items, self.chunk, self.path)
                if not batch:
                    break
                count += len(batch)
                yield batch
        if count == 0:
            # not a FeatureCollection, or an empty one
            obj = await asyncio.to_thread(_load_document, self.path)
            features = _features_of(obj)
            if features:
                count = len(features)
                yield features
        logger.info("source.geojson path=%s features=%d", self.path, count)


class GeoJsonLinesSource:
    """Newline-delimited GeoJSON: one Feature or FeatureCollection per line."""

    def __init__(self, path: str, chunk: int = 1000):
        self.path = path
        self.chunk = chunk

    async def batches(self) -> t.AsyncIterator[t.List[dict]]:
        batch: t.List[dict] = []
        lines = 0
        with open(self.path, "r", encoding="utf-8") as f:
            for n, line in enumerate(f, start=1):
                line = line.strip()
                if not line:
                    continue
                batch.append(_loads(line, f"{self.path}:{n}"))
                lines += 1
                if len(batch) >= self.chunk:
                    yield batch
                    batch = []
        if batch:
            yield batch
        logger.info("source.geojsonl path=%s lines=%d", self.path, lines)


class StdinSource:
    """Whole of standard input as one GeoJSON document."""

    def __init__(self, stream: t.Optional[t.TextIO] = None):
        self.stream = stream

    async def batches(self) -> t.AsyncIterator[t.List[dict]]:
        text = (self.stream or sys.stdin).read()
        if not text.strip():
            raise ValidationFailure("Empty or invalid input to upload")
        yield _features_of(_loads(text, "stdin"))
