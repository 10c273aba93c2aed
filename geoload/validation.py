"""GeoJSON validity check used before a batch is normalized."""

from __future__ import annotations

import typing as t

from jsonschema import Draft202012Validator

from geoload.errors import ValidationFailure
from geoload.models import Feature
from geoload.utils import get_logger, load_schema

logger = get_logger(__name__)

_VALIDATOR: t.Optional[Draft202012Validator] = None


def _validator() -> Draft202012Validator:
    global _VALIDATOR
    if _VALIDATOR is None:
        _VALIDATOR = Draft202012Validator(load_schema("geojson.schema.json"))
    return _VALIDATOR


def geojson_errors(obj: t.Any, limit: int = 5) -> t.List[str]:
    errors = []
    for err in _validator().iter_errors(obj):
        errors.append(f"{err.message} at {list(err.path)}")
        if len(errors) >= limit:
            break
    return errors


def is_valid_geojson(obj: t.Any) -> bool:
    return _validator().is_valid(obj)


def collate(items: t.Iterable[t.Any]) -> t.List[Feature]:
    """Flatten Features and FeatureCollections into a list of Features."""
    out: t.List[Feature] = []
    for item in items:
        kind = item.get("type") if isinstance(item, dict) else None
        if kind == "Feature":
            out.append(item)
        elif kind == "FeatureCollection":
            out.extend(item.get("features") or [])
        else:
            raise ValidationFailure(f"Unknown type {kind!r}; expected Feature or FeatureCollection")
    return out


def require_valid(features: t.List[Feature]) -> None:
    fc = {"type": "FeatureCollection", "features": features}
    if not is_valid_geojson(fc):
        errors = geojson_errors(fc)
        logger.error("validation failed errors=%s", errors)
        raise ValidationFailure("Invalid GeoJSON: " + "; ".join(errors))
