from geoload.credentials import resolve_token
from geoload.errors import ConfigError
from geoload.utils import normalize_http_url, parse_datetime_safe, redact_secrets

import pytest


def test_normalize_http_url():
    assert normalize_http_url("xyz.api.here.com/") == "https://xyz.api.here.com"
    assert normalize_http_url("  ") is None


def test_parse_datetime_variants():
    assert parse_datetime_safe("2024-05-01T10:00:00Z").hour == 10
    assert parse_datetime_safe("Wed, 01 May 2024 10:00:00 GMT").day == 1
    assert parse_datetime_safe("05/01/2024").month == 5
    assert parse_datetime_safe("soon") is None


def test_redact_secrets():
    s = redact_secrets("GET /iterate?access_token=abc123 Authorization: Bearer xyz.789")
    assert "abc123" not in s and "xyz.789" not in s


def test_resolve_token_order(monkeypatch):
    monkeypatch.setenv("XYZ_TOKEN", "from-env")
    assert resolve_token("explicit") == "explicit"
    assert resolve_token(None, {"store": {"token": "cfg"}}) == "from-env"
    monkeypatch.delenv("XYZ_TOKEN")
    assert resolve_token(None, {"store": {"token": "cfg"}}) == "cfg"
    with pytest.raises(ConfigError):
        resolve_token()


def test_render_result_hint_only_without_failure_entries():
    from geoload.models import FailureEntry, UploadResult
    from geoload.summary import render_result

    quiet = render_result(UploadResult(success_count=2, failed_count=1))
    assert "run command with -e" in quiet
    verbose = render_result(
        UploadResult(success_count=2, failed_count=1, failure_entries=[FailureEntry({"id": "bad-1"}, "rejected")])
    )
    assert "run command with -e" not in verbose
    assert "bad-1" in verbose and "rejected" in verbose
