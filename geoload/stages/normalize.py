from __future__ import annotations

import copy
import datetime as dt
import hashlib
import json
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Sequence

from geoload.models import META_NS, Feature, ensure_meta
from geoload.summary import make_table, render_text
from geoload.utils import from_epoch_millis, get_logger, parse_datetime_safe, to_epoch_millis

logger = get_logger(__name__)


@dataclass
class TagSpec:
    fixed: List[str] = field(default_factory=list)
    properties: List[str] = field(default_factory=list)
    date_properties: List[str] = field(default_factory=list)
    date_tags: List[str] = field(default_factory=list)
    date_props: List[str] = field(default_factory=list)


@dataclass
class Duplicate:
    id: Optional[str]
    geometry: str
    properties: str


@dataclass
class NormalizeResult:
    features: List[Feature]
    duplicates: List[Duplicate] = field(default_factory=list)

    @property
    def report(self) -> Optional[str]:
        if not self.duplicates:
            return None
        return format_duplicates(self.duplicates, kept=len(self.features), total=len(self.features) + len(self.duplicates))


# ---------- Identity ----------

def _stable_dumps(obj: Any) -> str:
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=False, default=str)


def content_hash(feature: Feature) -> str:
    """md5 of the feature's content, ignoring its current id."""
    body = {k: v for k, v in feature.items() if k != "id"}
    return hashlib.md5(_stable_dumps(body).encode("utf-8")).hexdigest()


def _has_id(feature: Feature) -> bool:
    return feature.get("id") not in (None, "")


def id_from_fields(feature: Feature, id_fields: Sequence[str]) -> str:
    props = feature.get("properties")
    if not isinstance(props, dict):
        return ""
    vals = []
    for name in id_fields:
        v = props.get(name)
        # empty values contribute nothing, same as an unknown field
        if v:
            vals.append(str(v))
    return "-".join(vals)


# ---------- Tags ----------

def _tag_value(value: Any) -> str:
    s = str(value).lower()
    s = re.sub(r"\s+", "_", s)
    s = re.sub(r",+", "_", s)
    s = re.sub(r"&+", "_and_", s)
    s = re.sub(r"\++", "_plus_", s)
    s = re.sub(r"#+", "_num_", s)
    return s


def property_tags(props: Dict[str, Any], names: Iterable[str]) -> List[str]:
    out: List[str] = []
    for name in names:
        v = props.get(name)
        if v is None or v == "":
            continue
        key = re.sub(r"\s+", "_", name)
        values = v if isinstance(v, list) else [v]
        for item in values:
            if item is None or item == "":
                continue
            out.append(f"{key}@{_tag_value(item)}")
    return out


# ---------- Dates ----------

def parse_date_value(value: Any) -> Optional[dt.datetime]:
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        return from_epoch_millis(value)
    s = str(value).strip()
    try:
        return from_epoch_millis(float(s))
    except ValueError:
        pass
    return parse_datetime_safe(s)


def date_parts(value: dt.datetime) -> Dict[str, str]:
    iso_year, iso_week, _ = value.isocalendar()
    return {
        "year": f"{value.year}",
        "month": value.strftime("%B").lower(),
        "week": f"{iso_week}",
        "weekday": value.strftime("%A").lower(),
        "year_month": f"{value.year}-{value.month:02d}",
        "year_week": f"{iso_year}-{iso_week:02d}",
        "hour": f"{value.hour}",
    }


def _apply_dates(feature: Feature, spec: TagSpec, tags: List[str]) -> None:
    props = feature["properties"]
    for name in spec.date_properties:
        raw = props.get(name)
        if raw in (None, ""):
            continue
        when = parse_date_value(raw)
        if when is None:
            logger.debug("normalize.date skipped id=%s property=%s value=%r", feature.get("id"), name, raw)
            continue
        props[f"xyz_timestamp_{name}"] = to_epoch_millis(when)
        props[f"xyz_iso8601_{name}"] = when.strftime("%Y-%m-%dT%H:%M:%S")
        parts = date_parts(when)
        for part in spec.date_tags:
            tags.append(f"{name}_{part}@{parts[part]}")
        for part in spec.date_props:
            props[f"{name}_{part}"] = parts[part]


# ---------- Normalizer ----------

def normalize_features(
    features: Sequence[Feature],
    *,
    id_fields: Optional[Sequence[str]] = None,
    tags: Optional[TagSpec] = None,
    hash_ids: bool = False,
) -> NormalizeResult:
    """Assign ids, merge tags and drop content duplicates.

    Input features are copied; the caller's objects are left untouched.
    With ``id_fields`` a record without an id gets the hyphen-join of those
    property values; an existing id is kept. With ``hash_ids`` the id is the md5
    of the feature content (only for records still lacking one when
    ``id_fields`` is also given) and only the first feature per id is kept; the
    rest are reported as duplicates.
    """
    spec = tags or TagSpec()
    fixed = [x.lower() for x in spec.fixed if x]
    seen: Dict[str, Feature] = {}
    out: List[Feature] = []
    duplicates: List[Duplicate] = []

    for src in features:
        item = copy.deepcopy(src)
        orig_id = None

        if id_fields:
            # an id the record already carries is never replaced
            if not _has_id(item):
                fid = id_from_fields(item, id_fields)
                if fid:
                    item["id"] = fid
            if hash_ids and not _has_id(item):
                item.pop("id", None)
                item["id"] = content_hash(item)
        elif hash_ids:
            orig_id = item.pop("id", None)
            item["id"] = content_hash(item)

        if hash_ids:
            if item["id"] in seen:
                duplicates.append(
                    Duplicate(
                        id=orig_id,
                        geometry=_stable_dumps(item.get("geometry")),
                        properties=_stable_dumps(item.get("properties")),
                    )
                )
                continue
            seen[item["id"]] = item

        meta = ensure_meta(item)
        merged = list(fixed)
        merged.extend(str(x) for x in (meta.get("tags") or []))
        merged.extend(property_tags(item["properties"], spec.properties))
        _apply_dates(item, spec, merged)

        if orig_id is not None:
            meta["originalFeatureId"] = orig_id
        if merged:
            meta["tags"] = list(dict.fromkeys(merged))
        item["properties"][META_NS] = meta
        out.append(item)

    if duplicates:
        logger.warning("normalize.dedup: kept=%d from=%d duplicates=%d", len(out), len(features), len(duplicates))
    else:
        logger.debug("normalize: features=%d", len(out))
    return NormalizeResult(features=out, duplicates=duplicates)


def format_duplicates(duplicates: List[Duplicate], *, kept: int, total: int) -> str:
    rows = [{"id": d.id, "geometry": d.geometry, "properties": d.properties} for d in duplicates]
    bar = "*" * 63
    return render_text(
        bar,
        "Duplicate features detected; only the first of each was kept:",
        make_table(rows, ["id", "geometry", "properties"], max_width=60),
        f"uploading {kept} out of {total} records",
        bar,
    )
