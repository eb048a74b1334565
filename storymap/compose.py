"""
Compose a story map document into a render grid.

Columns are backbones (display_order or sequence order). Stories are grouped
into version buckets and each bucket is packed into its own horizontal band:

    columns:      BB-001   BB-002   BB-003
    row 0  MVP    ST-001            ST-002
    row 1  MVP             ST-004
    ---------------------------------------  slice boundary = 2
    row 2  R1     ST-010

Composition never raises for data problems. Stories whose backbone is not a
column are left out; run the validator to find them.
"""

from __future__ import annotations

import math
from collections.abc import Mapping
from typing import Any

from storymap.config import StoryMapConfig
from storymap.schema import (
    CROSS_PERSONA_KEY,
    UNRANKED,
    PlacedStory,
    RenderGrid,
    is_identifier,
    is_number,
)
from storymap.session import iter_stories
from storymap.util import print_warning


# =============================================================================
# HELPERS
# =============================================================================


def _as_list(value: Any) -> list:
    return value if isinstance(value, list) else []


def _numeric(value: Any) -> bool:
    return is_number(value) and not math.isnan(value)


def _index_by_id(items: list) -> dict[Any, dict]:
    """Map id -> item for mapping items, first occurrence wins."""
    index: dict[Any, dict] = {}
    for item in items:
        if isinstance(item, Mapping) and is_identifier(item.get("id")):
            index.setdefault(item["id"], item)
    return index


def version_label(story: Mapping, default_version: str) -> str:
    """Bucket label of a story (default_version when unset)."""
    version = story.get("version")
    if version is None or version == "":
        return default_version
    return str(version)


# =============================================================================
# COLUMNS
# =============================================================================


def order_columns(doc: Mapping) -> list[dict]:
    """Backbones in display order.

    display_order.backbones wins when present (unknown and repeated IDs are
    dropped); otherwise backbones are sorted by sequence, then id.
    """
    backbones = [b for b in _as_list(doc.get("backbones")) if isinstance(b, Mapping)]

    display_order = doc.get("display_order")
    if isinstance(display_order, Mapping) and isinstance(display_order.get("backbones"), list):
        by_id = _index_by_id(backbones)
        columns = []
        used: set = set()
        for backbone_id in display_order["backbones"]:
            if not is_identifier(backbone_id) or backbone_id in used:
                continue
            if backbone_id in by_id:
                columns.append(by_id[backbone_id])
                used.add(backbone_id)
        return columns

    def sequence_key(backbone: Mapping) -> tuple[float, str]:
        sequence = backbone.get("sequence")
        return (sequence if _numeric(sequence) else UNRANKED, str(backbone.get("id", "")))

    return sorted(backbones, key=sequence_key)


def align_activities(doc: Mapping, columns: list[dict]) -> list[dict | None]:
    """Activity of each column, None when its activity_id does not resolve."""
    activities = _index_by_id(_as_list(doc.get("activities")))
    aligned = []
    for backbone in columns:
        activity_id = backbone.get("activity_id")
        aligned.append(activities.get(activity_id) if is_identifier(activity_id) else None)
    return aligned


# =============================================================================
# STORIES
# =============================================================================


def collect_stories(
    doc: Mapping, columns: list[dict], config: StoryMapConfig
) -> list[PlacedStory]:
    """Gather persona and cross-persona stories whose backbone is a column."""
    column_index: dict[Any, int] = {}
    for index, backbone in enumerate(columns):
        if is_identifier(backbone.get("id")):
            column_index.setdefault(backbone["id"], index)

    owners: list[tuple[str, str, list]] = []
    personas = doc.get("personas")
    if isinstance(personas, Mapping):
        for persona_key, persona in personas.items():
            if not isinstance(persona, Mapping):
                continue
            name = persona.get("name") or str(persona_key)
            owners.append((str(persona_key), str(name), _as_list(persona.get("stories"))))
    owners.append(
        (CROSS_PERSONA_KEY, config.cross_persona_label, _as_list(doc.get("cross_persona_stories")))
    )

    placed = []
    for persona_key, persona_name, stories in owners:
        for story in stories:
            if not isinstance(story, Mapping):
                continue
            backbone_id = story.get("backbone_id")
            if not is_identifier(backbone_id) or backbone_id not in column_index:
                continue
            placed.append(
                PlacedStory(
                    story=dict(story),
                    persona_key=persona_key,
                    persona_name=persona_name,
                    col_index=column_index[backbone_id],
                    version=version_label(story, config.default_version),
                )
            )
    return placed


def order_versions(labels: set[str] | list[str], preferred: list | None) -> list[str]:
    """Order version labels: preferred ones first, the rest sorted."""
    rank: dict[str, int] = {}
    for index, label in enumerate(_as_list(preferred)):
        if isinstance(label, (str, int, float)) and not isinstance(label, bool):
            rank.setdefault(str(label), index)

    known = sorted((label for label in set(labels) if label in rank), key=rank.__getitem__)
    unknown = sorted(label for label in set(labels) if label not in rank)
    return known + unknown


def rank_key(story: Mapping, story_mapping: Mapping) -> float:
    """Rank of a story within its column.

    backbone_x_version_sort if numeric, else story_mapping[id].sequence if
    numeric, else UNRANKED.
    """
    sort_value = story.get("backbone_x_version_sort")
    if _numeric(sort_value):
        return sort_value

    story_id = story.get("id")
    entry = story_mapping.get(story_id) if is_identifier(story_id) else None
    if isinstance(entry, Mapping) and _numeric(entry.get("sequence")):
        return entry["sequence"]
    return UNRANKED


# =============================================================================
# ROW ASSIGNMENT
# =============================================================================


def arrange_by_version(
    placed: list[PlacedStory],
    column_count: int,
    version_order: list[str],
    story_mapping: Mapping,
) -> tuple[list[list[PlacedStory | None]], list[int]]:
    """Pack stories into rows, one band per version bucket.

    Returns:
        Tuple of (rows, slice_boundaries)
    """
    rows: list[list[PlacedStory | None]] = []
    slice_boundaries: list[int] = []

    buckets: dict[str, list[PlacedStory]] = {}
    for item in placed:
        buckets.setdefault(item.version, []).append(item)

    # Last used row per column, shared by all buckets
    column_occupied = [-1] * column_count

    first_bucket = True
    for version in version_order:
        bucket = buckets.get(version)
        if not bucket:
            continue

        bucket_start = max(0, max(column_occupied, default=-1) + 1)
        if not first_bucket:
            slice_boundaries.append(bucket_start)
        first_bucket = False

        bucket.sort(
            key=lambda item: (
                item.col_index,
                rank_key(item.story, story_mapping),
                str(item.story.get("id", "")),
            )
        )

        for item in bucket:
            target_row = max(column_occupied[item.col_index] + 1, bucket_start)
            while len(rows) <= target_row:
                rows.append([None] * column_count)
            rows[target_row][item.col_index] = item
            column_occupied[item.col_index] = target_row

    return rows, slice_boundaries


# =============================================================================
# MAIN COMPOSITION
# =============================================================================


def compose(doc: Any, config: StoryMapConfig | None = None) -> RenderGrid:
    """Compose a document into a RenderGrid.

    Args:
        doc: Document mapping (may be partially invalid)
        config: Defaults for version labels/order (default: StoryMapConfig())

    Returns:
        RenderGrid with columns, activity_by_column, rows and slice_boundaries
    """
    config = config or StoryMapConfig()
    if not isinstance(doc, Mapping):
        return RenderGrid()

    columns = order_columns(doc)
    activity_by_column = align_activities(doc, columns)
    placed = collect_stories(doc, columns, config)

    preferred = doc.get("version_order")
    if not isinstance(preferred, list):
        preferred = config.version_order
    labels = {item.version for item in placed}
    version_order = order_versions(labels, preferred)

    story_mapping = doc.get("story_mapping")
    if not isinstance(story_mapping, Mapping):
        story_mapping = {}

    rows, slice_boundaries = arrange_by_version(
        placed, len(columns), version_order, story_mapping
    )

    return RenderGrid(
        columns=[dict(column) for column in columns],
        activity_by_column=[
            dict(activity) if activity is not None else None for activity in activity_by_column
        ],
        rows=rows,
        slice_boundaries=slice_boundaries,
    )


# =============================================================================
# OUTPUT FORMATTING
# =============================================================================


def format_grid(grid: RenderGrid) -> list[str]:
    """Plain-text listing of a grid: columns, then each band's placed stories."""
    lines = ["Columns:"]
    for index, column in enumerate(grid.columns):
        activity = grid.activity_by_column[index]
        activity_name = activity.get("name", "?") if activity else "-"
        lines.append(f"  {index}: {column.get('id')}  {column.get('name', '')}  [{activity_name}]")

    for start, stop in grid.bands():
        band = [cell for row in grid.rows[start:stop] for cell in row if cell is not None]
        label = band[0].version if band else "?"
        lines.append("")
        lines.append(f"-- {label} (rows {start}-{stop - 1}) --")
        for row in range(start, stop):
            for col, cell in enumerate(grid.rows[row]):
                if cell is None:
                    continue
                lines.append(
                    f"  [{row},{col}] {cell.id}  ({cell.persona_name})  {cell.story.get('text', '')}"
                )

    lines.append("")
    lines.append(
        f"{len(grid.placed_stories())} stories, {grid.row_count} rows, "
        f"{grid.column_count} columns, {len(grid.bands())} version band(s)"
    )
    return lines


def story_map_grid_command(doc: Mapping, config: StoryMapConfig | None = None) -> int:
    """Compose `doc` and print the grid listing."""
    grid = compose(doc, config)
    for line in format_grid(grid):
        print(line)

    left_out = sum(1 for _ in iter_stories(doc)) - len(grid.placed_stories())
    if left_out > 0:
        print_warning(
            f"{left_out} story(ies) not placed: backbone_id is not a grid column "
            "(run `storymap validate` for details)"
        )
    return 0
