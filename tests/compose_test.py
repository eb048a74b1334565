import copy
import math

from storymap.compose import (
    compose,
    format_grid,
    order_columns,
    order_versions,
    rank_key,
)
from storymap.config import StoryMapConfig
from storymap.schema import CROSS_PERSONA_KEY, RenderGrid


def _ids(row):
    return [cell.id if cell is not None else None for cell in row]


def _story(story_id, backbone_id, version="MVP", **extra):
    story = {"id": story_id, "text": f"Story {story_id}", "backbone_id": backbone_id, "version": version}
    story.update(extra)
    return story


def _set_stories(doc, stories):
    doc["personas"] = {"P001": {"name": "Org admin", "stories": stories}}
    return doc


def _mixed_document(doc):
    """Add Release1 and Future stories across both personas."""
    stories = doc["personas"]["P001"]["stories"]
    stories.append(_story("ST-020", "BB-001", "Release1", backbone_x_version_sort=1))
    stories.append(_story("ST-021", "BB-003", "Release1"))
    stories.append(_story("ST-030", "BB-002", "Future"))
    doc["personas"]["P002"]["stories"].append(_story("ST-022", "BB-001", "Release1"))
    return doc


def assert_collision_free(grid: RenderGrid) -> None:
    """Each placed story appears in exactly one cell."""
    ids = [cell.id for cell in grid.placed_stories()]
    assert len(ids) == len(set(ids))


def assert_bands_disjoint(grid: RenderGrid) -> None:
    """Rows of a band only hold that band's version."""
    for start, stop in grid.bands():
        versions = {cell.version for row in grid.rows[start:stop] for cell in row if cell is not None}
        assert len(versions) == 1


class TestColumns:
    """Column ordering and activity alignment."""

    def test_sequence_order(self, story_map) -> None:
        story_map["backbones"].reverse()
        grid = compose(story_map)
        assert [c["id"] for c in grid.columns] == ["BB-001", "BB-002", "BB-003"]

    def test_sequence_ties_break_by_id(self, story_map) -> None:
        for backbone in story_map["backbones"]:
            backbone["sequence"] = 1
        story_map["backbones"].reverse()
        assert [c["id"] for c in order_columns(story_map)] == ["BB-001", "BB-002", "BB-003"]

    def test_missing_sequence_sorts_last(self, story_map) -> None:
        del story_map["backbones"][0]["sequence"]
        assert [c["id"] for c in order_columns(story_map)] == ["BB-002", "BB-003", "BB-001"]

    def test_display_order_wins(self, story_map) -> None:
        """Unknown and repeated IDs are dropped; unlisted backbones are not rendered."""
        story_map["display_order"] = {"backbones": ["BB-003", "BB-001", "BB-404", "BB-003"]}
        grid = compose(story_map)
        assert [c["id"] for c in grid.columns] == ["BB-003", "BB-001"]
        assert _ids(grid.rows[0]) == ["ST-002", "ST-001"]
        assert "ST-004" not in [cell.id for cell in grid.placed_stories()]

    def test_activity_by_column(self, story_map) -> None:
        story_map["backbones"][2]["activity_id"] = "ACT-404"
        grid = compose(story_map)
        assert [a["id"] if a else None for a in grid.activity_by_column] == [
            "ACT-001",
            "ACT-001",
            None,
        ]


class TestRows:
    """Version bands and row packing."""

    def test_single_band(self, story_map) -> None:
        """All MVP, one story per column: one row, no boundaries."""
        grid = compose(story_map)
        assert [c["id"] for c in grid.columns] == ["BB-001", "BB-002", "BB-003"]
        assert grid.row_count == 1
        assert _ids(grid.rows[0]) == ["ST-001", "ST-004", "ST-002"]
        assert grid.slice_boundaries == []

    def test_second_story_in_column_goes_to_next_row(self, story_map) -> None:
        story_map["personas"]["P002"]["stories"].append(_story("ST-006", "BB-001"))
        grid = compose(story_map)
        assert _ids(grid.rows[0]) == ["ST-001", "ST-004", "ST-002"]
        assert _ids(grid.rows[1]) == ["ST-006", None, None]
        assert grid.slice_boundaries == []

    def test_two_versions_in_one_column(self, story_map) -> None:
        _set_stories(story_map, [
            _story("ST-011", "BB-001", "Release1"),
            _story("ST-010", "BB-001", "MVP"),
        ])
        grid = compose(story_map)
        assert grid.rows[0][0].id == "ST-010"
        assert grid.rows[1][0].id == "ST-011"
        assert grid.rows[1][0].version == "Release1"
        assert grid.slice_boundaries == [1]
        assert grid.bands() == [(0, 1), (1, 2)]

    def test_band_starts_below_every_column(self, story_map) -> None:
        """A new band starts after the deepest column of the previous bands."""
        _set_stories(story_map, [
            _story("ST-010", "BB-001"),
            _story("ST-011", "BB-001"),
            _story("ST-020", "BB-002", "Release1"),
        ])
        grid = compose(story_map)
        assert grid.slice_boundaries == [2]
        assert _ids(grid.rows[2]) == [None, "ST-020", None]
        assert _ids(grid.rows[1]) == ["ST-011", None, None]

    def test_document_version_order(self, story_map) -> None:
        story_map["version_order"] = ["Release1", "MVP"]
        _set_stories(story_map, [_story("ST-010", "BB-001", "MVP"), _story("ST-011", "BB-002", "Release1")])
        grid = compose(story_map)
        assert _ids(grid.rows[0]) == [None, "ST-011", None]
        assert _ids(grid.rows[1]) == ["ST-010", None, None]

    def test_unknown_versions_sorted_after_known(self, story_map) -> None:
        _set_stories(story_map, [
            _story("ST-B", "BB-001", "Beta"),
            _story("ST-A", "BB-001", "Alpha"),
            _story("ST-M", "BB-001", "MVP"),
        ])
        grid = compose(story_map)
        assert [grid.rows[r][0].id for r in range(3)] == ["ST-M", "ST-A", "ST-B"]
        assert grid.slice_boundaries == [1, 2]

    def test_missing_version_uses_default(self, story_map) -> None:
        config = StoryMapConfig(default_version="Release1")
        _set_stories(story_map, [_story("ST-010", "BB-001", "MVP"), _story("ST-011", "BB-001", None)])
        grid = compose(story_map, config)
        assert grid.rows[0][0].id == "ST-010"
        assert grid.rows[1][0].id == "ST-011"
        assert grid.rows[1][0].version == "Release1"
        assert grid.slice_boundaries == [1]

    def test_no_stories(self, story_map) -> None:
        del story_map["personas"]
        grid = compose(story_map)
        assert grid.column_count == 3
        assert grid.rows == []
        assert grid.bands() == []


class TestRanking:
    """Order of stories within one column and band."""

    def test_backbone_x_version_sort(self, story_map) -> None:
        _set_stories(story_map, [
            _story("ST-A", "BB-001", backbone_x_version_sort=2),
            _story("ST-B", "BB-001", backbone_x_version_sort=1),
        ])
        grid = compose(story_map)
        assert [grid.rows[r][0].id for r in range(2)] == ["ST-B", "ST-A"]

    def test_story_mapping_sequence_fallback(self, story_map) -> None:
        _set_stories(story_map, [_story("ST-X", "BB-001"), _story("ST-Y", "BB-001")])
        story_map["story_mapping"] = {
            "ST-X": {"backbone_id": "BB-001", "sequence": 2},
            "ST-Y": {"backbone_id": "BB-001", "sequence": 1},
        }
        grid = compose(story_map)
        assert [grid.rows[r][0].id for r in range(2)] == ["ST-Y", "ST-X"]

    def test_unranked_last_then_by_id(self, story_map) -> None:
        _set_stories(story_map, [
            _story("ST-C", "BB-001"),
            _story("ST-B", "BB-001"),
            _story("ST-Z", "BB-001", backbone_x_version_sort=1),
        ])
        grid = compose(story_map)
        assert [grid.rows[r][0].id for r in range(3)] == ["ST-Z", "ST-B", "ST-C"]

    def test_rank_key(self) -> None:
        mapping = {"ST-1": {"sequence": 4}, "ST-2": {"sequence": "x"}}
        assert rank_key({"id": "ST-1", "backbone_x_version_sort": 2}, mapping) == 2
        assert rank_key({"id": "ST-1"}, mapping) == 4
        assert rank_key({"id": "ST-2"}, mapping) == math.inf
        assert rank_key({"id": "ST-3", "backbone_x_version_sort": float("nan")}, mapping) == math.inf


class TestPersonas:
    """Persona attribution and cross-persona stories."""

    def test_persona_attribution(self, story_map) -> None:
        grid = compose(story_map)
        st004 = grid.cell(0, 1)
        assert st004.persona_key == "P002"
        assert st004.persona_name == "Project member"
        assert st004.col_index == 1

    def test_cross_persona_story(self, mapped_story_map) -> None:
        grid = compose(mapped_story_map)
        cross = [cell for cell in grid.placed_stories() if cell.persona_key == CROSS_PERSONA_KEY]
        assert [cell.id for cell in cross] == ["ST-005"]
        assert cross[0].persona_name == "All users"
        assert _ids(grid.rows[1]) == [None, "ST-005", None]

    def test_cross_persona_label_from_config(self, mapped_story_map) -> None:
        grid = compose(mapped_story_map, StoryMapConfig(cross_persona_label="Everyone"))
        assert grid.cell(1, 1).persona_name == "Everyone"


class TestRobustness:
    """Composition of invalid documents."""

    def test_unresolvable_backbone_is_dropped(self, story_map) -> None:
        story_map["personas"]["P001"]["stories"][0]["backbone_id"] = "BB-404"
        grid = compose(story_map)
        assert "ST-001" not in [cell.id for cell in grid.placed_stories()]
        assert _ids(grid.rows[0]) == [None, "ST-004", "ST-002"]

    def test_non_mapping_document(self) -> None:
        for doc in (None, [], "story map", 3):
            grid = compose(doc)
            assert grid.columns == []
            assert grid.rows == []
            assert grid.slice_boundaries == []

    def test_wrong_container_types(self) -> None:
        grid = compose({"backbones": "x", "personas": [1, 2], "activities": None})
        assert grid.column_count == 0
        assert grid.row_count == 0

    def test_input_not_modified(self, mapped_story_map) -> None:
        before = repr(mapped_story_map)
        compose(mapped_story_map)
        assert repr(mapped_story_map) == before

    def test_cell_out_of_range(self, story_map) -> None:
        grid = compose(story_map)
        assert grid.cell(5, 0) is None
        assert grid.cell(0, -1) is None


class TestProperties:
    """Collision freedom and band disjointness on a mixed document."""

    def test_mixed_document(self, mapped_story_map) -> None:
        grid = compose(_mixed_document(mapped_story_map))

        assert_collision_free(grid)
        assert_bands_disjoint(grid)
        assert len(grid.placed_stories()) == 8
        assert grid.slice_boundaries == [2, 4]
        for boundary in grid.slice_boundaries:
            assert 0 < boundary < grid.row_count

    def test_input_order_does_not_matter(self, mapped_story_map) -> None:
        """Reordering personas and story lists yields the same grid."""
        doc = _mixed_document(mapped_story_map)
        expected = compose(doc)

        shuffled = copy.deepcopy(doc)
        shuffled["personas"] = dict(reversed(list(shuffled["personas"].items())))
        for persona in shuffled["personas"].values():
            persona["stories"].reverse()
        shuffled["cross_persona_stories"].reverse()
        grid = compose(shuffled)

        assert [_ids(row) for row in grid.rows] == [_ids(row) for row in expected.rows]
        assert grid.slice_boundaries == expected.slice_boundaries

    def test_order_versions(self) -> None:
        assert order_versions({"Beta", "MVP", "Alpha", "Release1"}, ["Release1", "MVP"]) == [
            "Release1",
            "MVP",
            "Alpha",
            "Beta",
        ]
        assert order_versions(["b", "a"], None) == ["a", "b"]


class TestFormatGrid:
    """Plain-text grid listing."""

    def test_lists_columns_bands_and_stories(self, mapped_story_map) -> None:
        lines = format_grid(compose(mapped_story_map))
        text = "\n".join(lines)
        assert lines[0] == "Columns:"
        assert "0: BB-001  Create org  [Organization]" in text
        assert "-- MVP (rows 0-1) --" in text
        assert "[1,1] ST-005  (All users)" in text
        assert lines[-1] == "4 stories, 2 rows, 3 columns, 1 version band(s)"

    def test_band_label_uses_configured_default_version(self, story_map) -> None:
        _set_stories(story_map, [_story("ST-010", "BB-001", "MVP"), _story("ST-011", "BB-002", None)])
        grid = compose(story_map, StoryMapConfig(default_version="GA", version_order=["MVP", "GA"]))
        text = "\n".join(format_grid(grid))
        assert grid.cell(1, 1).version == "GA"
        assert "-- GA (rows 1-1) --" in text
        assert text.count("-- MVP") == 1
