import os
import sys
import json
import time
import uuid
import asyncio
import yaml
import pydantic
from pathlib import Path
from typing import Dict, Any, List, Optional, TextIO, Tuple

from geoload.aggregator import ResultAggregator
from geoload.credentials import resolve_token
from geoload.errors import ConfigError
from geoload.models import Feature, UploadOptions, UploadResult, UploadTask
from geoload.queue import UploadQueue
from geoload.sources import RecordSource, SpaceSource, open_source
from geoload.stages.chunker import chunk
from geoload.stages.normalize import TagSpec, normalize_features
from geoload.summary import FeatureSummary, render_result
from geoload.transport import DEFAULT_BASE_URL, TransportClient
from geoload.utils import get_logger, redact_secrets, validate_config
from geoload.validation import collate, require_valid

logger = get_logger(__name__)

UPLOAD_KEYS = (
    "chunk", "stream", "id_fields", "tags", "tag_properties", "date_properties", "date_tags",
    "date_props", "override", "errors", "token", "file", "workers", "max_in_flight", "retries", "retry_wait",
)


def load_config(config_path: Optional[str]) -> Dict[str, Any]:
    if not config_path:
        return {}
    with open(config_path, "r", encoding="utf-8") as f:
        cfg = yaml.safe_load(f) or {}
    validate_config(cfg)
    return cfg


def _apply_overrides(cfg: Dict[str, Any], overrides: Optional[Dict[str, Any]]) -> None:
    store = cfg.setdefault("store", {})
    if os.getenv("XYZ_BASE_URL"):
        store["base_url"] = os.environ["XYZ_BASE_URL"]
    if not overrides:
        return

    if overrides.get("base_url") is not None:
        store["base_url"] = overrides["base_url"]

    upload = cfg.setdefault("upload", {})
    for key in UPLOAD_KEYS:
        if overrides.get(key) is not None:
            upload[key] = overrides[key]


def build_options(cfg: Dict[str, Any]) -> UploadOptions:
    try:
        return UploadOptions(**(cfg.get("upload") or {}))
    except pydantic.ValidationError as e:
        problems = "; ".join(f"{'.'.join(str(p) for p in err['loc']) or 'options'}: {err['msg']}" for err in e.errors())
        raise ConfigError(f"Invalid upload options: {problems}") from e


def _file_tag(path: Optional[str]) -> Optional[str]:
    if not path or path == "-":
        return None
    stem = Path(path).stem
    return stem.lower() or None


def _emit(out: Optional[TextIO], text: str) -> None:
    stream = out if out is not None else sys.stdout
    stream.write(text + "\n")
    stream.flush()


async def upload_batches(
    target_id: str,
    source: RecordSource,
    options: UploadOptions,
    *,
    transport: TransportClient,
    token: str,
    summary: Optional[FeatureSummary] = None,
    out: Optional[TextIO] = None,
) -> UploadResult:
    """Normalize, batch and deliver every record of ``source`` to ``target_id``.

    Streaming mode turns each source batch into one task on a 10-worker
    queue. Otherwise the whole input is normalized once, chunked, and the
    chunks go out one at a time. Invalid GeoJSON aborts the run with
    ``ValidationFailure``; transport failures only count as failed records.
    """
    tags = list(options.tags)
    file_tag = _file_tag(options.file)
    if file_tag and file_tag not in tags:
        tags.append(file_tag)
    tag_string = ",".join(x.lower() for x in tags)
    tag_spec = TagSpec(
        fixed=tags,
        properties=options.tag_properties,
        date_properties=options.date_properties,
        date_tags=options.date_tags,
        date_props=options.date_props,
    )
    aggregator = ResultAggregator(verbose=options.errors, stream=options.stream, out=out)

    async def handler(task: UploadTask):
        return await transport.send(
            task.features, task.target_id, token=token, add_tags=task.tag_string or None, retries=task.retry_budget
        )

    def make_task(features: List[Feature]) -> UploadTask:
        return UploadTask(
            target_id=target_id,
            options=options,
            tag_string=tag_string,
            features=tuple(features),
            retry_budget=options.retries,
        )

    def prepare(features: List[Feature]) -> List[Feature]:
        require_valid(features)
        res = normalize_features(
            features, id_fields=options.id_fields, tags=tag_spec, hash_ids=options.override
        )
        if res.report:
            _emit(out, res.report)
        if summary is not None:
            summary.add(res.features)
        return res.features

    t0 = time.monotonic()
    submitted = 0
    if options.stream:
        queue = UploadQueue(
            handler,
            on_complete=aggregator.record,
            workers=options.workers,
            max_in_flight=options.max_in_flight,
        )
        async with queue:
            async for raw in source.batches():
                features = collate(raw)
                if not features:
                    continue
                features = prepare(features)
                if not features:
                    continue
                submitted += len(features)
                await queue.enqueue(make_task(features))
    else:
        features: List[Feature] = []
        async for raw in source.batches():
            features.extend(collate(raw))
        features = prepare(features)
        submitted = len(features)
        parts = chunk(features, options.chunk)
        aggregator.total_tasks = len(parts)
        queue = UploadQueue(handler, on_complete=aggregator.record, workers=1, max_in_flight=options.max_in_flight)
        async with queue:
            for part in parts:
                await queue.enqueue(make_task(part))

    _emit(out, "")
    result = aggregator.snapshot()
    logger.info(
        "upload done target=%s submitted=%d success=%d failed=%d took_ms=%d",
        target_id,
        submitted,
        result.success_count,
        result.failed_count,
        int((time.monotonic() - t0) * 1000),
    )
    return result


def _transport_for(cfg: Dict[str, Any], options: Optional[UploadOptions] = None) -> TransportClient:
    store = cfg.get("store") or {}
    return TransportClient(
        store.get("base_url") or DEFAULT_BASE_URL,
        retries=options.retries if options else 3,
        retry_wait=options.retry_wait if options else 1.0,
        timeout=float(store.get("timeout", 60.0)),
    )


async def _execute_upload(
    target_id: str,
    cfg: Dict[str, Any],
    options: UploadOptions,
    token: str,
    out: Optional[TextIO],
    source_space: Optional[str] = None,
) -> Tuple[UploadResult, Optional[FeatureSummary]]:
    summary = None if options.stream else FeatureSummary()
    async with _transport_for(cfg, options) as transport:
        if source_space:
            limit = options.chunk if options.stream else 5000
            source: RecordSource = SpaceSource(transport, source_space, token=token, limit=limit)
        else:
            source = open_source(options.file, options.chunk if options.stream else 1000)
        result = await upload_batches(
            target_id, source, options, transport=transport, token=token, summary=summary, out=out
        )
    return result, summary


def run_upload(
    target_id: str,
    *,
    config_path: Optional[str] = None,
    overrides: Optional[Dict[str, Any]] = None,
    out: Optional[TextIO] = None,
) -> UploadResult:
    """Execute one upload with given config file path and command line overrides."""
    run_id = uuid.uuid4().hex[:8]
    logger.info("=== run start id=%s ===", run_id)

    try:
        cfg = load_config(config_path)
        _apply_overrides(cfg, overrides)
        options = build_options(cfg)
        source_space = (overrides or {}).get("from_space")
        if source_space and options.file:
            raise ConfigError("choose either a file or a source space, not both")
        token = resolve_token(options.token, cfg)
        logger.info(
            "upload start target=%s file=%s stream=%s chunk=%d token=%s",
            target_id, options.file, options.stream, options.chunk, redact_secrets(f"token={token}"),
        )

        result, summary = asyncio.run(_execute_upload(target_id, cfg, options, token, out, source_space))

        where = f"'{options.file}'" if options.file else "data"
        _emit(out, f"{where} uploaded to space '{target_id}'")
        if result.failed_count > 0:
            _emit(out, render_result(result))
        elif summary is not None:
            _emit(out, summary.render())
        return result

    except Exception as e:
        logger.error("Upload failed: %s", redact_secrets(str(e)))
        raise
    finally:
        logger.info("=== run end id=%s ===", run_id)


async def _execute_show(
    target_id: str, cfg: Dict[str, Any], token: str, *, limit: int, handle: Optional[str], tags: Optional[str],
    raw: bool, out: TextIO,
) -> int:
    count = 0
    features: List[Feature] = []
    async with _transport_for(cfg) as transport:
        source = SpaceSource(transport, target_id, token=token, limit=min(limit, 5000), handle=handle, tags=tags, total=limit)
        async for batch in source.batches():
            for f in batch:
                if count >= limit:
                    break
                count += 1
                if raw:
                    out.write(json.dumps(f, ensure_ascii=False) + "\n")
                else:
                    features.append(f)
        next_handle = source.handle
    if not raw:
        fc = {"type": "FeatureCollection", "features": features, "handle": next_handle}
        out.write(json.dumps(fc, ensure_ascii=False, indent=2) + "\n")
    out.flush()
    return count


def run_show(
    target_id: str,
    *,
    config_path: Optional[str] = None,
    overrides: Optional[Dict[str, Any]] = None,
    out: Optional[TextIO] = None,
) -> int:
    """Read features of a space back and write them to ``out`` (stdout)."""
    overrides = overrides or {}
    cfg = load_config(config_path)
    _apply_overrides(cfg, {"base_url": overrides.get("base_url")})
    token = resolve_token(overrides.get("token"), cfg)
    count = asyncio.run(
        _execute_show(
            target_id,
            cfg,
            token,
            limit=int(overrides.get("limit") or 5000),
            handle=overrides.get("handle"),
            tags=overrides.get("tags"),
            raw=bool(overrides.get("raw")),
            out=out or sys.stdout,
        )
    )
    logger.info("show done target=%s features=%d", target_id, count)
    return count
