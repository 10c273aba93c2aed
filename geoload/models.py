from __future__ import annotations

import typing as t
from dataclasses import dataclass, field

from pydantic import BaseModel, Field, field_validator, model_validator

META_NS = "@ns:com:here:xyz"

DATE_PARTS = ("year", "month", "week", "weekday", "year_month", "year_week", "hour")

Feature = t.Dict[str, t.Any]


def ensure_meta(feature: Feature) -> dict:
    """Make sure ``properties`` and the metadata namespace exist; return the namespace."""
    if not isinstance(feature.get("properties"), dict):
        feature["properties"] = {}
    meta = feature["properties"].get(META_NS)
    if not isinstance(meta, dict):
        meta = {}
        feature["properties"][META_NS] = meta
    return meta


def feature_tags(feature: Feature) -> t.List[str]:
    meta = (feature.get("properties") or {}).get(META_NS) or {}
    tags = meta.get("tags") or []
    return [str(x) for x in tags]


class UploadOptions(BaseModel):
    """Per-run upload settings, merged from config and command line."""

    chunk: int = Field(200, ge=1)
    stream: bool = False
    id_fields: t.List[str] = Field(default_factory=list)
    tags: t.List[str] = Field(default_factory=list)
    tag_properties: t.List[str] = Field(default_factory=list)
    date_properties: t.List[str] = Field(default_factory=list)
    date_tags: t.List[str] = Field(default_factory=list)
    date_props: t.List[str] = Field(default_factory=list)
    override: bool = False
    errors: bool = False
    token: t.Optional[str] = None
    file: t.Optional[str] = None
    workers: int = Field(10, ge=1)
    max_in_flight: int = Field(25, ge=1)
    retries: int = Field(3, ge=0)
    retry_wait: float = Field(1.0, ge=0)

    model_config = {"frozen": True}

    @field_validator("id_fields", "tags", "tag_properties", "date_properties", "date_tags", "date_props", mode="before")
    @classmethod
    def _split_csv(cls, v):
        if v is None:
            return []
        if isinstance(v, str):
            return [x.strip() for x in v.split(",") if x.strip()]
        return list(v)

    @field_validator("date_tags", "date_props")
    @classmethod
    def _known_parts(cls, v: t.List[str]) -> t.List[str]:
        unknown = [x for x in v if x not in DATE_PARTS]
        if unknown:
            raise ValueError(f"unknown date parts {unknown}; choose from {', '.join(DATE_PARTS)}")
        return v

    @model_validator(mode="after")
    def _date_parts_need_property(self):
        if (self.date_tags or self.date_props) and not self.date_properties:
            raise ValueError("date tags/props require at least one date property")
        return self

    @property
    def tag_string(self) -> str:
        return ",".join(x.lower() for x in self.tags)


@dataclass(frozen=True)
class UploadTask:
    target_id: str
    options: UploadOptions
    tag_string: str
    features: t.Tuple[Feature, ...]
    retry_budget: int = 3

    def __len__(self) -> int:
        return len(self.features)


@dataclass
class RecordFailure:
    record: Feature
    reason: str
    position: t.Optional[int] = None


@dataclass
class Delivered:
    success_ids: t.List[t.Optional[str]] = field(default_factory=list)
    success_count: int = 0
    failures: t.List[RecordFailure] = field(default_factory=list)

    def merge(self, other: "Delivered") -> "Delivered":
        return Delivered(
            success_ids=self.success_ids + other.success_ids,
            success_count=self.success_count + other.success_count,
            failures=self.failures + other.failures,
        )


@dataclass
class FatalFailure:
    reason: str
    records: t.List[Feature] = field(default_factory=list)

    def as_delivered(self) -> Delivered:
        return Delivered(failures=[RecordFailure(record=r, reason=self.reason) for r in self.records])


Outcome = t.Union[Delivered, FatalFailure]


@dataclass
class FailureEntry:
    record: Feature
    reason: str


@dataclass
class UploadResult:
    success_count: int = 0
    failed_count: int = 0
    failure_entries: t.List[FailureEntry] = field(default_factory=list)

    @property
    def total(self) -> int:
        return self.success_count + self.failed_count


@dataclass
class QueueState:
    in_flight: int = 0
    completed: int = 0
    failed: int = 0
    shutdown_requested: bool = False
    peak_in_flight: int = 0
