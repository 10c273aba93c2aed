from __future__ import annotations

import io
import typing as t
from collections import Counter
from dataclasses import dataclass, field

from rich.console import Console
from rich.table import Table
from rich.text import Text

from geoload.models import Feature, UploadResult, feature_tags

BAR = "=" * 58


def make_table(rows: t.List[dict], columns: t.List[str], *, title: t.Optional[str] = None, max_width: int = 80) -> Table:
    """Table of ``rows`` keyed by ``columns``; long cells are cut with an ellipsis."""
    table = Table(title=title)
    for col in columns:
        table.add_column(col, max_width=max_width, no_wrap=True, overflow="ellipsis")
    for row in rows:
        table.add_row(*(Text("" if row.get(c) is None else str(row.get(c))) for c in columns))
    return table


def render_text(*items: t.Any, width: int = 120) -> str:
    """Render strings and rich renderables to plain text."""
    console = Console(file=io.StringIO(), width=width, color_system=None, highlight=False, emoji=False)
    for item in items:
        console.print(item, markup=False)
    return console.file.getvalue().rstrip("\n")


@dataclass
class FeatureSummary:
    """Geometry and tag histograms of uploaded features."""

    count: int = 0
    geometries: Counter = field(default_factory=Counter)
    tags: Counter = field(default_factory=Counter)

    def add(self, features: t.Iterable[Feature]) -> None:
        for f in features:
            self.count += 1
            geom = f.get("geometry")
            if isinstance(geom, dict) and geom.get("type"):
                self.geometries[geom["type"]] += 1
            for tag in feature_tags(f):
                self.tags[tag] += 1

    def render(self) -> str:
        items: t.List[t.Any] = [BAR, "                     Upload Summary", BAR, f"Total {self.count} features"]
        if self.geometries:
            rows = [{"GeometryType": k, "Count": v} for k, v in self.geometries.most_common()]
            items.append(make_table(rows, ["GeometryType", "Count"]))
        else:
            items.append("No geometry object found")
        items.append(f"Total unique tag Count : {len(self.tags)}")
        if self.tags:
            rows = [{"TagName": k, "Count": v} for k, v in self.tags.most_common()]
            items.append(make_table(rows, ["TagName", "Count"]))
        return render_text(*items)


def render_result(result: UploadResult) -> str:
    items: t.List[t.Any] = []
    if result.failure_entries:
        items.append("not all the features could be successfully uploaded")
    else:
        items.append(
            "not all the features could be successfully uploaded -- to print rejected features, run command with -e"
        )
    items.append(
        make_table(
            [{"success": result.success_count, "failed": result.failed_count, "total": result.total}],
            ["success", "failed", "total"],
            title="Upload Summary",
        )
    )
    if result.failure_entries:
        rows = [{"id": e.record.get("id"), "reason": e.reason} for e in result.failure_entries]
        items.append(make_table(rows, ["id", "reason"], title="Rejected features"))
    return render_text(*items)
