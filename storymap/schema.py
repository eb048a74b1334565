"""
Pydantic schema models and constants for story map documents.

This is the SINGLE SOURCE OF TRUTH for story map field rules.
Used by:
- validate.py (per-story field checks via DocumentStory)
- compose.py (grid placement)
- session.py (edit staging)
- options.py (editor option lists)

The document itself stays a plain mapping (as loaded from YAML) so that
partially invalid documents can still be validated and rendered. The models
below describe stored stories (checked one at a time by the validator) and
the values the engine produces.
"""

from __future__ import annotations

import math
from enum import Enum
from typing import Any

try:
    from pydantic import BaseModel, Field
except ImportError:
    raise ImportError(
        "pydantic is required for storymap. "
        "Install with: pip install storymap-grid"
    )


# =============================================================================
# DOCUMENT CONSTANTS
# =============================================================================

# Version label used when a story has no `version`
DEFAULT_VERSION = "MVP"

# Built-in bucket order used when the document has no `version_order`
DEFAULT_VERSION_ORDER = ["MVP", "Release1", "Release2", "v1.0", "v2.0", "Future"]

# Persona key and label for stories in `cross_persona_stories`
CROSS_PERSONA_KEY = "CROSS"
CROSS_PERSONA_LABEL = "All users"

# Priority bounds (inclusive)
PRIORITY_MIN = 1
PRIORITY_MAX = 5

# Temporary story_mapping sequence for newly added stories, renormalized later
DRAFT_SEQUENCE = 9999

# Rank for stories with neither backbone_x_version_sort nor a mapping sequence
UNRANKED = math.inf


# =============================================================================
# ENUMS
# =============================================================================


class StoryStatus(str, Enum):
    """Workflow status of a story."""

    TODO = "TODO"
    IN_PROGRESS = "IN_PROGRESS"
    REVIEW = "REVIEW"
    DONE = "DONE"
    CANCELLED = "CANCELLED"


def is_number(value: Any) -> bool:
    """Check for an int/float that is not a bool."""
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def is_identifier(value: Any) -> bool:
    """Check for a usable ID: a non-empty string or an int."""
    if isinstance(value, str):
        return value != ""
    return isinstance(value, int) and not isinstance(value, bool)


def is_positive_int(value: Any) -> bool:
    """Check for an integral number >= 1 (1.0 counts, True does not)."""
    if not is_number(value) or not math.isfinite(value):
        return False
    return value == int(value) and value >= 1


# =============================================================================
# STORY MODEL
# =============================================================================


class Story(BaseModel):
    """A single backlog item.

    Example:
        id: ST-001
        text: "I want to create an organization, So that my team can share work"
        backbone_id: BB-001
        version: MVP
        priority: 2
        status: TODO
        backbone_x_version_sort: 1
    """

    id: str = Field(..., description="Story ID, unique across all personas")
    text: str = Field(..., description="Story text (I want ..., So that ...)")
    backbone_id: str = Field(..., description="Backbone (column) ID")
    version: str | None = Field(default=None, description="Version bucket label")
    priority: int | None = Field(
        default=None, ge=PRIORITY_MIN, le=PRIORITY_MAX, description="Priority 1-5"
    )
    acceptance_criteria: list[str] = Field(
        default_factory=list, description="Acceptance criteria"
    )
    status: StoryStatus | None = Field(default=None, description="Workflow status")
    backbone_x_version_sort: int | None = Field(
        default=None, description="Rank within backbone x version"
    )

    model_config = {"extra": "allow", "use_enum_values": True}

    def to_document(self) -> dict[str, Any]:
        """Plain mapping in document form (unset optional fields omitted)."""
        return self.model_dump(exclude_none=True)


class DocumentStory(Story):
    """A story as stored in a saved document.

    Ranks start at 1 (drafts built from Story carry 0 until renumbered).
    Numeric fields are strict: floats, strings and booleans are rejected
    instead of coerced.
    """

    priority: int | None = Field(
        default=None, ge=PRIORITY_MIN, le=PRIORITY_MAX, strict=True, description="Priority 1-5"
    )
    backbone_x_version_sort: int | None = Field(
        default=None, ge=1, strict=True, description="Rank within backbone x version"
    )


# =============================================================================
# STAGED DELTA MODELS
# =============================================================================


class StagedAddition(BaseModel):
    """A draft story waiting to be inserted into a persona."""

    story: dict = Field(..., description="Story mapping to insert")
    persona_key: str = Field(..., description="Target persona key")


class StagedMove(BaseModel):
    """Position override for a story. Unset fields keep their current value."""

    backbone_id: str | None = Field(default=None, description="Target backbone")
    version: str | None = Field(default=None, description="Target version bucket")
    sequence: float | None = Field(
        default=None, description="Rank within the backbone (inf means last)"
    )

    def merged(self, **changes: Any) -> StagedMove:
        """Return a copy with the non-None `changes` applied."""
        update = {k: v for k, v in changes.items() if v is not None}
        return self.model_copy(update=update)


# =============================================================================
# RENDER GRID MODELS
# =============================================================================


class PlacedStory(BaseModel):
    """A story positioned in the grid, with its owning persona."""

    story: dict
    persona_key: str
    persona_name: str
    col_index: int
    version: str = Field(default=DEFAULT_VERSION, description="Resolved version bucket label")

    @property
    def id(self) -> str:
        return str(self.story.get("id", ""))


class RenderGrid(BaseModel):
    """Grid produced by compose().

    `rows[r][c]` is the story at row r of column c, or None for an empty cell.
    `slice_boundaries` lists the rows that start a new version band.
    """

    columns: list[dict] = Field(default_factory=list)
    activity_by_column: list[dict | None] = Field(default_factory=list)
    rows: list[list[PlacedStory | None]] = Field(default_factory=list)
    slice_boundaries: list[int] = Field(default_factory=list)

    @property
    def column_count(self) -> int:
        return len(self.columns)

    @property
    def row_count(self) -> int:
        return len(self.rows)

    def cell(self, row: int, col: int) -> PlacedStory | None:
        """Story at (row, col), None for empty or out-of-range cells."""
        if 0 <= row < len(self.rows) and 0 <= col < len(self.columns):
            return self.rows[row][col]
        return None

    def placed_stories(self) -> list[PlacedStory]:
        """All placed stories in row-major order."""
        return [cell for row in self.rows for cell in row if cell is not None]

    def bands(self) -> list[tuple[int, int]]:
        """(start, stop) row range of each version band."""
        if not self.rows:
            return []
        starts = [0] + list(self.slice_boundaries)
        stops = list(self.slice_boundaries) + [len(self.rows)]
        return list(zip(starts, stops))


# =============================================================================
# EDIT OPTIONS MODELS
# =============================================================================


class PersonaOption(BaseModel):
    key: str
    name: str


class BackboneOption(BaseModel):
    id: str
    name: str
    activity_id: str | None = None


class EditOptions(BaseModel):
    """Option lists offered by story editors."""

    personas: list[PersonaOption] = Field(default_factory=list)
    versions: list[str] = Field(default_factory=list)
    backbones: list[BackboneOption] = Field(default_factory=list)
