import gzip
import json

import httpx


def point(fid=None, lon=13.4, lat=52.5, **props):
    f = {"type": "Feature", "geometry": {"type": "Point", "coordinates": [lon, lat]}, "properties": props}
    if fid is not None:
        f["id"] = fid
    return f


def sent_features(request: httpx.Request) -> list:
    return json.loads(gzip.decompress(request.content))["features"]


def echo(request: httpx.Request) -> httpx.Response:
    return httpx.Response(200, json={"type": "FeatureCollection", "features": sent_features(request)})


class ListSource:
    def __init__(self, *batches):
        self._batches = [list(b) for b in batches]

    async def batches(self):
        for b in self._batches:
            yield b
