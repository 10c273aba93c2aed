"""Record sources. Each exposes ``batches()``, an async iterator of raw record lists."""

from __future__ import annotations

import os
import typing as t

from geoload.sources.geojson_adapter import GeoJsonFileSource, GeoJsonLinesSource, StdinSource
from geoload.sources.space_adapter import SpaceSource

__all__ = ["GeoJsonFileSource", "GeoJsonLinesSource", "StdinSource", "SpaceSource", "open_source", "RecordSource"]


class RecordSource(t.Protocol):
    def batches(self) -> t.AsyncIterator[t.List[dict]]: ...


def open_source(path: t.Optional[str], chunk: int = 1000) -> RecordSource:
    if not path or path == "-":
        return StdinSource()
    ext = os.path.splitext(path)[1].lower()
    if ext in (".geojsonl", ".jsonl", ".ndjson"):
        return GeoJsonLinesSource(path, chunk)
    return GeoJsonFileSource(path, chunk)
