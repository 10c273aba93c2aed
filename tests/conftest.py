import os

# keep test runs from creating a logs/ directory
os.environ.setdefault("LOG_DIR", "")

import httpx
import pytest

from geoload.transport import TransportClient


@pytest.fixture
def make_transport():
    def _make(handler, **kwargs):
        kwargs.setdefault("retry_wait", 0)
        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        return TransportClient("https://store.test", client=client, **kwargs)

    return _make
