import asyncio
import io

import httpx
import pytest

from geoload.errors import ConfigError, ValidationFailure
from geoload.models import UploadOptions, feature_tags
from geoload.orchestrator import _apply_overrides, build_options, load_config, upload_batches
from geoload.summary import FeatureSummary, render_result

from helpers import ListSource, echo, point, sent_features


def _run(make_transport, handler, source, options, summary=None):
    out = io.StringIO()

    async def go():
        async with make_transport(handler, retries=options.retries) as tc:
            return await upload_batches("sp1", source, options, transport=tc, token="t", summary=summary, out=out)

    return asyncio.run(go()), out.getvalue()


def test_upload_happy_path(make_transport):
    summary = FeatureSummary()
    result, _ = _run(
        make_transport, echo, ListSource([point("a"), point("b"), point("c")]), UploadOptions(), summary
    )
    assert (result.success_count, result.failed_count) == (3, 0)
    assert summary.count == 3
    assert summary.geometries["Point"] == 3


def test_upload_tags_include_file_name(make_transport):
    seen = []

    def handler(request):
        seen.append(request)
        return echo(request)

    options = UploadOptions(tags="Parks", file="data/Berlin.geojson")
    _run(make_transport, handler, ListSource([point("a")]), options)
    assert seen[0].url.params["addTags"] == "parks,berlin"
    assert feature_tags(sent_features(seen[0])[0]) == ["parks", "berlin"]


def test_duplicates_are_dropped_before_upload(make_transport):
    seen = []

    def handler(request):
        seen.extend(sent_features(request))
        return echo(request)

    feats = [point("x1", name="same"), point("x2", name="same"), point("x3", name="other")]
    result, out = _run(make_transport, handler, ListSource(feats), UploadOptions(override=True))
    assert result.success_count == 2
    assert len(seen) == 2
    assert "x2" in out
    assert "uploading 2 out of 3 records" in out


def test_every_record_is_counted_once(make_transport):
    def handler(request):
        feats = sent_features(request)
        if any(f["properties"].get("bad") for f in feats):
            return httpx.Response(400, text="rejected")
        return echo(request)

    feats = [point(str(i), bad=(i == 4)) for i in range(7)]
    options = UploadOptions(stream=True, chunk=2, errors=True, retries=0)
    result, _ = _run(make_transport, handler, ListSource(feats[:2], feats[2:4], feats[4:6], feats[6:]), options)
    assert result.success_count == 5
    assert result.failed_count == 2
    assert result.total == 7
    assert sorted(e.record["id"] for e in result.failure_entries) == ["4", "5"]
    assert "not all the features" in render_result(result)


def test_chunking_in_batch_mode(make_transport):
    sizes = []

    def handler(request):
        sizes.append(len(sent_features(request)))
        return echo(request)

    feats = [point(str(i)) for i in range(5)]
    result, _ = _run(make_transport, handler, ListSource(feats[:3], feats[3:]), UploadOptions(chunk=2))
    assert sizes == [2, 2, 1]
    assert result.success_count == 5


def test_invalid_geojson_aborts_run(make_transport):
    calls = []

    def handler(request):
        calls.append(1)
        return echo(request)

    bad = {"type": "Feature", "geometry": {"type": "Point", "coordinates": "nope"}, "properties": {}}
    with pytest.raises(ValidationFailure):
        _run(make_transport, handler, ListSource([point("a"), bad]), UploadOptions())
    assert calls == []


def test_unknown_input_type_aborts_run(make_transport):
    with pytest.raises(ValidationFailure):
        _run(make_transport, echo, ListSource([{"type": "Point", "coordinates": [1, 2]}]), UploadOptions())


def test_feature_collections_are_flattened(make_transport):
    fc = {"type": "FeatureCollection", "features": [point("a"), point("b")]}
    result, _ = _run(make_transport, echo, ListSource([fc, point("c")]), UploadOptions())
    assert result.success_count == 3


def test_build_options_from_overrides(monkeypatch):
    monkeypatch.delenv("XYZ_BASE_URL", raising=False)
    cfg = {"upload": {"chunk": 50, "tags": ["a"]}}
    _apply_overrides(cfg, {"base_url": "https://other.test", "tags": "x,y", "chunk": None, "stream": True})
    opts = build_options(cfg)
    assert cfg["store"]["base_url"] == "https://other.test"
    assert opts.chunk == 50
    assert opts.tags == ["x", "y"]
    assert opts.stream is True


def test_build_options_rejects_bad_values():
    with pytest.raises(ConfigError):
        build_options({"upload": {"chunk": 0}})
    with pytest.raises(ConfigError):
        build_options({"upload": {"date_properties": "when", "date_tags": "century"}})
    with pytest.raises(ConfigError):
        build_options({"upload": {"date_tags": "year"}})


def test_load_config_validates_schema(tmp_path):
    good = tmp_path / "good.yaml"
    good.write_text("store:\n  base_url: https://store.test\nupload:\n  chunk: 100\n", encoding="utf-8")
    assert load_config(str(good))["upload"]["chunk"] == 100

    bad = tmp_path / "bad.yaml"
    bad.write_text("upload:\n  chunky: 100\n", encoding="utf-8")
    with pytest.raises(ConfigError):
        load_config(str(bad))
