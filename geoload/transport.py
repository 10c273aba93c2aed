"""HTTP boundary to the feature store.

``TransportClient.send`` delivers one batch: encode, gzip, POST, classify.
5xx and connection errors are retried with a fixed wait; 413 splits the batch
in half until it fits or a single record is left.
"""

from __future__ import annotations

import gzip
import json
import logging
import re
import typing as t

import httpx
from tenacity import AsyncRetrying, before_sleep_log, retry_if_exception_type, stop_after_attempt, wait_fixed

from geoload.errors import (
    ConfigError,
    FatalTransportFailure,
    OversizedPayload,
    RetryableTransportFailure,
)
from geoload.models import Delivered, FatalFailure, Feature, Outcome, RecordFailure
from geoload.stages.chunker import bisect
from geoload.utils import get_logger, normalize_http_url

logger = get_logger(__name__)

DEFAULT_BASE_URL = "https://xyz.api.here.com"
TOO_LARGE = "feature too large to upload (HTTP 413), even on its own"

# C0 controls and DEL, keeping tab, newline and carriage return
_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")


def strip_control_chars(value: t.Any) -> t.Any:
    if isinstance(value, str):
        return _CONTROL_CHARS.sub("", value)
    if isinstance(value, dict):
        return {strip_control_chars(k): strip_control_chars(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [strip_control_chars(v) for v in value]
    return value


def encode_batch(features: t.Sequence[Feature]) -> bytes:
    fc = {"type": "FeatureCollection", "features": strip_control_chars(list(features))}
    try:
        raw = json.dumps(fc, ensure_ascii=False, allow_nan=False).encode("utf-8")
        return gzip.compress(raw)
    except (TypeError, ValueError, OverflowError, OSError) as e:
        raise FatalTransportFailure(f"cannot encode batch: {e}") from e


def _response_json(resp: httpx.Response) -> dict:
    try:
        body = resp.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


class TransportClient:
    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        *,
        client: t.Optional[httpx.AsyncClient] = None,
        retries: int = 3,
        retry_wait: float = 1.0,
        timeout: float = 60.0,
    ):
        url = normalize_http_url(base_url)
        if not url:
            raise ConfigError(f"invalid store url: {base_url!r}")
        self.base_url = url
        self.retries = retries
        self.retry_wait = retry_wait
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> "TransportClient":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.aclose()

    # ---------- Low level ----------

    def _headers(self, token: str, **extra: str) -> t.Dict[str, str]:
        headers = {"Authorization": f"Bearer {token}", "App-Name": "geoload"}
        headers.update(extra)
        return headers

    def _retrying(self, retries: t.Optional[int] = None) -> AsyncRetrying:
        budget = self.retries if retries is None else retries
        return AsyncRetrying(
            stop=stop_after_attempt(budget + 1),
            wait=wait_fixed(self.retry_wait),
            retry=retry_if_exception_type(RetryableTransportFailure),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )

    async def _request_once(self, method: str, url: str, **kwargs) -> httpx.Response:
        try:
            resp = await self._client.request(method, url, **kwargs)
        except httpx.TransportError as e:
            raise RetryableTransportFailure(f"{method} {url} failed: {e}") from e
        if resp.status_code >= 500:
            raise RetryableTransportFailure(
                f"HTTP {resp.status_code} from store", status_code=resp.status_code, body=resp.text
            )
        if resp.status_code == 413:
            raise OversizedPayload("payload too large", status_code=413, body=resp.text)
        if not 200 <= resp.status_code < 300:
            raise FatalTransportFailure(
                f"Invalid response - {resp.text}", status_code=resp.status_code, body=resp.text
            )
        return resp

    async def _request(self, method: str, url: str, *, retries: t.Optional[int] = None, **kwargs) -> httpx.Response:
        try:
            async for attempt in self._retrying(retries):
                with attempt:
                    return await self._request_once(method, url, **kwargs)
        except RetryableTransportFailure as e:
            budget = self.retries if retries is None else retries
            raise FatalTransportFailure(
                f"giving up after {budget} retries: {e}", status_code=e.status_code, body=e.body
            ) from e
        raise AssertionError("unreachable")

    def features_url(self, target_id: str) -> str:
        return f"{self.base_url}/hub/spaces/{target_id}/features"

    # ---------- Upload ----------

    async def send_once(
        self,
        features: t.Sequence[Feature],
        target_id: str,
        *,
        token: str,
        add_tags: t.Optional[str] = None,
        retries: t.Optional[int] = None,
    ) -> Delivered:
        """POST one batch as is. Raises ``OversizedPayload`` or ``FatalTransportFailure``."""
        body = encode_batch(features)
        params = {"clientId": "cli"}
        if add_tags:
            params["addTags"] = add_tags.lower()
        headers = self._headers(
            token,
            **{
                "Content-Type": "application/geo+json",
                "Content-Encoding": "gzip",
                "Accept-Encoding": "gzip",
            },
        )
        resp = await self._request(
            "POST", self.features_url(target_id), retries=retries, params=params, content=body, headers=headers
        )
        return self._classify(features, _response_json(resp))

    def _classify(self, features: t.Sequence[Feature], body: dict) -> Delivered:
        failures: t.List[RecordFailure] = []
        failed_positions = set()
        for entry in body.get("failed") or []:
            if not isinstance(entry, dict):
                entry = {"message": str(entry)}
            pos = entry.get("position")
            record: Feature = entry
            if isinstance(pos, int) and 0 <= pos < len(features):
                record = features[pos]
                failed_positions.add(pos)
            else:
                pos = None
            reason = entry.get("message") or json.dumps(entry, ensure_ascii=False, default=str)
            failures.append(RecordFailure(record=record, reason=str(reason), position=pos))

        stored = body.get("features")
        if isinstance(stored, list):
            success_ids = [f.get("id") for f in stored if isinstance(f, dict)]
        else:
            success_ids = [f.get("id") for i, f in enumerate(features) if i not in failed_positions]
        success_count = max(0, len(features) - len(failures))
        return Delivered(success_ids=success_ids, success_count=success_count, failures=failures)

    async def send(
        self,
        features: t.Sequence[Feature],
        target_id: str,
        *,
        token: str,
        add_tags: t.Optional[str] = None,
        retries: t.Optional[int] = None,
    ) -> Outcome:
        """Deliver a batch, halving it on 413 until every part fits.

        Halves are kept on an explicit stack so deep splits do not recurse.
        A part that fails fatally after a split is recorded per record; a
        fatal failure of the unsplit batch is returned as ``FatalFailure``.
        """
        batch = list(features)
        if not batch:
            return Delivered()
        pending: t.List[t.List[Feature]] = [batch]
        result = Delivered()
        split = False
        while pending:
            current = pending.pop()
            try:
                delivered = await self.send_once(current, target_id, token=token, add_tags=add_tags, retries=retries)
            except OversizedPayload:
                if len(current) == 1:
                    logger.warning("upload.oversized single feature id=%s", current[0].get("id"))
                    result = result.merge(Delivered(failures=[RecordFailure(record=current[0], reason=TOO_LARGE)]))
                    continue
                first, second = bisect(current)
                logger.info("upload.bisect size=%d -> %d + %d", len(current), len(first), len(second))
                pending.append(second)
                pending.append(first)
                split = True
                continue
            except FatalTransportFailure as e:
                if not split:
                    return FatalFailure(reason=str(e), records=current)
                result = result.merge(FatalFailure(reason=str(e), records=current).as_delivered())
                continue
            result = result.merge(delivered)
        return result

    # ---------- Read back ----------

    async def iterate(
        self,
        target_id: str,
        *,
        token: str,
        limit: int = 5000,
        handle: t.Optional[t.Union[int, str]] = None,
        tags: t.Optional[str] = None,
    ) -> t.Tuple[t.List[Feature], t.Union[int, str]]:
        """Fetch one page of features. A returned handle of -1 means no more pages."""
        params: t.Dict[str, t.Any] = {"limit": limit, "clientId": "cli"}
        if handle not in (None, 0, "0"):
            params["handle"] = handle
        if tags:
            params["tags"] = tags
        resp = await self._request(
            "GET",
            f"{self.base_url}/hub/spaces/{target_id}/iterate",
            params=params,
            headers=self._headers(token, **{"Accept-Encoding": "gzip"}),
        )
        body = _response_json(resp)
        features = body.get("features") or []
        next_handle = body.get("handle")
        if not features or next_handle is None:
            next_handle = -1
        return features, next_handle
