"""
Validate story map documents for referential and numeric consistency.

Usage:
    storymap validate story_map.yaml [more.yaml ...]

Checks performed (in this order, never stopping early except for a missing root):
- Collections: activities, backbones, personas present
- Activities: required fields, duplicate IDs
- Backbones: required fields, sequence is a positive integer, activity_id resolves
- Stories: required fields, global duplicate IDs, backbone_id resolves,
  field values checked against the DocumentStory pydantic model,
  version listed in version_order
- display_order.backbones: known IDs, no duplicates, covers every backbone
- story_mapping: known story IDs, backbone_id resolves, sequence is a positive integer

Exit codes:
- 0: All validations passed
- 1: Violations found
- 2: File not found or unreadable
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from storymap.errors import DocumentLoadError, FatalShapeError
from storymap.loader import load_document
from storymap.schema import DocumentStory, is_identifier, is_positive_int


# =============================================================================
# VALIDATION RESULT TYPES
# =============================================================================


class ViolationCategory(str, Enum):
    MISSING_FIELD = "MissingField"
    UNRESOLVED_REFERENCE = "UnresolvedReference"
    DUPLICATE_ID = "DuplicateId"
    RANGE_VIOLATION = "RangeViolation"
    ENUM_VIOLATION = "EnumViolation"
    INCOMPLETE_ORDERING = "IncompleteOrdering"
    FATAL_SHAPE = "FatalShape"


@dataclass
class Violation:
    """A single validation violation."""

    path: str
    message: str
    category: ViolationCategory = ViolationCategory.MISSING_FIELD
    file: str | None = None

    def __str__(self) -> str:
        loc = f"{self.file}:{self.path}" if self.file else self.path
        return f"[{self.category.value}] {loc}: {self.message}"


@dataclass
class ValidationResult:
    """Result of validating one or more story map documents."""

    violations: list[Violation] = field(default_factory=list)
    files_checked: int = 0
    activities_count: int = 0
    backbones_count: int = 0
    stories_count: int = 0

    @property
    def is_valid(self) -> bool:
        return len(self.violations) == 0

    def add(
        self,
        path: str,
        category: ViolationCategory,
        message: str,
        file: str | None = None,
    ) -> None:
        self.violations.append(Violation(path, message, category, file))

    def missing(self, path: str, field_name: str) -> None:
        self.add(path, ViolationCategory.MISSING_FIELD, f"Missing required field: {field_name}")


# Story fields checked by hand in validate_story (presence, duplicates, references)
REFERENCE_FIELDS = {"id", "text", "backbone_id"}

# Category for a schema error on each story field (anything else: MissingField)
SCHEMA_FIELD_CATEGORIES = {
    "status": ViolationCategory.ENUM_VIOLATION,
    "version": ViolationCategory.ENUM_VIOLATION,
    "priority": ViolationCategory.RANGE_VIOLATION,
    "backbone_x_version_sort": ViolationCategory.RANGE_VIOLATION,
}


# =============================================================================
# SECTION VALIDATORS
# =============================================================================


def validate_collections(doc: Mapping, result: ValidationResult) -> None:
    """Check that the required top-level collections exist."""
    for name in ("activities", "backbones"):
        value = doc.get(name)
        if value is None:
            result.missing("root", name)
        elif not isinstance(value, list):
            result.add(name, ViolationCategory.MISSING_FIELD, f"{name} must be a list")

    personas = doc.get("personas")
    if personas is None:
        result.missing("root", "personas")
    elif not isinstance(personas, Mapping):
        result.add(
            "personas", ViolationCategory.MISSING_FIELD, "personas must be a mapping of persona key to persona"
        )


def validate_activities(doc: Mapping, result: ValidationResult) -> set[str]:
    """Validate activities. Returns the set of known activity IDs."""
    activities = doc.get("activities")
    known: set[str] = set()
    if not isinstance(activities, list):
        return known

    seen: dict[str, str] = {}
    for index, activity in enumerate(activities):
        path = f"activities[{index}]"
        if not isinstance(activity, Mapping):
            result.add(path, ViolationCategory.MISSING_FIELD, "Activity must be a mapping")
            continue
        result.activities_count += 1

        if not is_identifier(activity.get("id")):
            result.missing(path, "id")
        if not activity.get("name"):
            result.missing(path, "name")

        activity_id = activity.get("id")
        if not is_identifier(activity_id):
            continue
        if activity_id in seen:
            result.add(
                f"{path}.id",
                ViolationCategory.DUPLICATE_ID,
                f"Duplicate activity ID '{activity_id}' (also in {seen[activity_id]})",
            )
        else:
            seen[activity_id] = path
        known.add(activity_id)

    return known


def validate_backbones(
    doc: Mapping, result: ValidationResult, known_activities: set[str]
) -> set[str]:
    """Validate backbones. Returns the set of known backbone IDs."""
    backbones = doc.get("backbones")
    known: set[str] = set()
    if not isinstance(backbones, list):
        return known

    seen: dict[str, str] = {}
    for index, backbone in enumerate(backbones):
        path = f"backbones[{index}]"
        if not isinstance(backbone, Mapping):
            result.add(path, ViolationCategory.MISSING_FIELD, "Backbone must be a mapping")
            continue
        result.backbones_count += 1

        if not is_identifier(backbone.get("id")):
            result.missing(path, "id")
        if not backbone.get("name"):
            result.missing(path, "name")

        if backbone.get("sequence") is None:
            result.missing(path, "sequence")
        elif not is_positive_int(backbone["sequence"]):
            result.add(
                f"{path}.sequence",
                ViolationCategory.RANGE_VIOLATION,
                f"sequence must be a positive integer, got {backbone['sequence']!r}",
            )

        activity_id = backbone.get("activity_id")
        if not is_identifier(activity_id):
            result.missing(path, "activity_id")
        elif activity_id not in known_activities:
            result.add(
                f"{path}.activity_id",
                ViolationCategory.UNRESOLVED_REFERENCE,
                f"activity_id '{activity_id}' does not match any activity",
            )

        backbone_id = backbone.get("id")
        if not is_identifier(backbone_id):
            continue
        if backbone_id in seen:
            result.add(
                f"{path}.id",
                ViolationCategory.DUPLICATE_ID,
                f"Duplicate backbone ID '{backbone_id}' (also in {seen[backbone_id]})",
            )
        else:
            seen[backbone_id] = path
        known.add(backbone_id)

    return known


def _schema_error_path(path: str, loc: tuple) -> str:
    """Join a pydantic error location onto a document path (indices as [n])."""
    for part in loc:
        path += f"[{part}]" if isinstance(part, int) else f".{part}"
    return path


def validate_story_schema(story: Mapping, path: str, result: ValidationResult) -> None:
    """Check story field values against DocumentStory.

    id, text and backbone_id problems are left to the referential checks in
    validate_story so each is reported once.
    """
    try:
        DocumentStory.model_validate(dict(story))
    except PydanticValidationError as e:
        for err in e.errors():
            field_name = str(err["loc"][0]) if err["loc"] else ""
            if field_name in REFERENCE_FIELDS:
                continue
            if err["type"] == "missing":
                category = ViolationCategory.MISSING_FIELD
            else:
                category = SCHEMA_FIELD_CATEGORIES.get(field_name, ViolationCategory.MISSING_FIELD)
            result.add(
                _schema_error_path(path, err["loc"]),
                category,
                f"Schema error at {'.'.join(str(x) for x in err['loc'])}: {err['msg']}",
            )


def validate_story(
    story: Any,
    path: str,
    result: ValidationResult,
    known_backbones: set[str],
    seen_stories: dict[str, str],
    version_order: list | None,
) -> None:
    """Validate a single story, recording its ID in `seen_stories`."""
    if not isinstance(story, Mapping):
        result.add(path, ViolationCategory.MISSING_FIELD, "Story must be a mapping")
        return
    result.stories_count += 1

    story_id = story.get("id")
    if not is_identifier(story_id):
        result.missing(path, "id")
    elif story_id in seen_stories:
        result.add(
            f"{path}.id",
            ViolationCategory.DUPLICATE_ID,
            f"Duplicate story ID '{story_id}' (also in {seen_stories[story_id]})",
        )
    else:
        seen_stories[story_id] = path

    if not story.get("text"):
        result.missing(path, "text")

    backbone_id = story.get("backbone_id")
    if not is_identifier(backbone_id):
        result.missing(path, "backbone_id")
    elif backbone_id not in known_backbones:
        result.add(
            f"{path}.backbone_id",
            ViolationCategory.UNRESOLVED_REFERENCE,
            f"backbone_id '{backbone_id}' does not match any backbone",
        )

    validate_story_schema(story, path, result)

    version = story.get("version")
    if isinstance(version, str) and isinstance(version_order, list) and version not in version_order:
        result.add(
            f"{path}.version",
            ViolationCategory.ENUM_VIOLATION,
            f"version '{version}' is not listed in version_order",
        )


def validate_stories(
    doc: Mapping, result: ValidationResult, known_backbones: set[str]
) -> set[str]:
    """Validate persona and cross-persona stories. Returns known story IDs."""
    seen: dict[str, str] = {}
    version_order = doc.get("version_order")

    personas = doc.get("personas")
    if isinstance(personas, Mapping):
        for persona_key, persona in personas.items():
            persona_path = f"personas.{persona_key}"
            if not isinstance(persona, Mapping):
                result.add(persona_path, ViolationCategory.MISSING_FIELD, "Persona must be a mapping")
                continue
            stories = persona.get("stories")
            if stories is None:
                continue
            if not isinstance(stories, list):
                result.add(
                    f"{persona_path}.stories", ViolationCategory.MISSING_FIELD, "stories must be a list"
                )
                continue
            for index, story in enumerate(stories):
                validate_story(
                    story,
                    f"{persona_path}.stories[{index}]",
                    result,
                    known_backbones,
                    seen,
                    version_order,
                )

    cross = doc.get("cross_persona_stories")
    if cross is not None:
        if not isinstance(cross, list):
            result.add(
                "cross_persona_stories", ViolationCategory.MISSING_FIELD, "cross_persona_stories must be a list"
            )
        else:
            for index, story in enumerate(cross):
                validate_story(
                    story,
                    f"cross_persona_stories[{index}]",
                    result,
                    known_backbones,
                    seen,
                    version_order,
                )

    return set(seen)


def validate_display_order(
    doc: Mapping, result: ValidationResult, known_backbones: set[str]
) -> None:
    """Validate display_order.backbones against the known backbones."""
    display_order = doc.get("display_order")
    if display_order is None:
        return
    if not isinstance(display_order, Mapping) or not isinstance(
        display_order.get("backbones"), list
    ):
        result.add(
            "display_order.backbones",
            ViolationCategory.MISSING_FIELD,
            "display_order must contain a backbones list",
        )
        return

    listed: dict[str, int] = {}
    for index, backbone_id in enumerate(display_order["backbones"]):
        path = f"display_order.backbones[{index}]"
        if not is_identifier(backbone_id) or backbone_id not in known_backbones:
            result.add(
                path,
                ViolationCategory.UNRESOLVED_REFERENCE,
                f"backbone_id '{backbone_id}' does not match any backbone",
            )
            if not is_identifier(backbone_id):
                continue
        if backbone_id in listed:
            result.add(
                path,
                ViolationCategory.DUPLICATE_ID,
                f"backbone_id '{backbone_id}' listed more than once "
                f"(also at display_order.backbones[{listed[backbone_id]}])",
            )
        else:
            listed[backbone_id] = index

    backbones = doc.get("backbones")
    if not isinstance(backbones, list):
        return

    # Missing IDs are reported in backbones order
    for backbone in backbones:
        if not isinstance(backbone, Mapping):
            continue
        backbone_id = backbone.get("id")
        if is_identifier(backbone_id) and backbone_id not in listed:
            result.add(
                "display_order.backbones",
                ViolationCategory.INCOMPLETE_ORDERING,
                f"backbone '{backbone_id}' is missing from display_order and will not be rendered",
            )
            listed[backbone_id] = -1


def validate_story_mapping(
    doc: Mapping,
    result: ValidationResult,
    known_backbones: set[str],
    known_stories: set[str],
) -> None:
    """Validate story_mapping entries."""
    mapping = doc.get("story_mapping")
    if mapping is None:
        return
    if not isinstance(mapping, Mapping):
        result.add("story_mapping", ViolationCategory.MISSING_FIELD, "story_mapping must be a mapping")
        return

    for story_id, entry in mapping.items():
        path = f"story_mapping.{story_id}"
        if story_id not in known_stories:
            result.add(
                path,
                ViolationCategory.UNRESOLVED_REFERENCE,
                f"story '{story_id}' does not match any story",
            )
        if not isinstance(entry, Mapping):
            result.add(path, ViolationCategory.MISSING_FIELD, "Mapping entry must be a mapping")
            continue

        backbone_id = entry.get("backbone_id")
        if not is_identifier(backbone_id):
            result.missing(path, "backbone_id")
        elif backbone_id not in known_backbones:
            result.add(
                f"{path}.backbone_id",
                ViolationCategory.UNRESOLVED_REFERENCE,
                f"backbone_id '{backbone_id}' does not match any backbone",
            )

        sequence = entry.get("sequence")
        if sequence is None:
            result.missing(path, "sequence")
        elif not is_positive_int(sequence):
            result.add(
                f"{path}.sequence",
                ViolationCategory.RANGE_VIOLATION,
                f"sequence must be a positive integer, got {sequence!r}",
            )


# =============================================================================
# MAIN VALIDATION
# =============================================================================


def validate_document(doc: Any, result: ValidationResult | None = None) -> ValidationResult:
    """Run every check against `doc`, accumulating into `result`.

    A document that is not a mapping gets a single FatalShape violation and
    no further checks.
    """
    result = result if result is not None else ValidationResult()

    if not isinstance(doc, Mapping):
        kind = "empty" if doc is None else type(doc).__name__
        result.add(
            "root",
            ViolationCategory.FATAL_SHAPE,
            f"Document root must be a mapping (got {kind})",
        )
        return result

    validate_collections(doc, result)
    known_activities = validate_activities(doc, result)
    known_backbones = validate_backbones(doc, result, known_activities)
    known_stories = validate_stories(doc, result, known_backbones)
    validate_display_order(doc, result, known_backbones)
    validate_story_mapping(doc, result, known_backbones, known_stories)
    return result


def validate(doc: Any, fatal: bool = False) -> list[Violation]:
    """Validate a story map document and return its violations in scan order.

    Args:
        doc: Document mapping
        fatal: Raise FatalShapeError instead of returning a root violation
            when the document has no analyzable root

    Returns:
        List of Violation (empty when valid)
    """
    result = validate_document(doc)
    if fatal and result.violations and result.violations[0].category is ViolationCategory.FATAL_SHAPE:
        raise FatalShapeError(result.violations[0].message)
    return result.violations


def validate_files(paths: list[Path]) -> tuple[ValidationResult, list[str]]:
    """Validate story map files.

    Returns:
        Tuple of (combined ValidationResult, list of load error messages)
    """
    result = ValidationResult()
    load_errors: list[str] = []

    for path in paths:
        try:
            doc = load_document(path)
        except DocumentLoadError as e:
            load_errors.append(str(e))
            continue

        result.files_checked += 1
        file_result = validate_document(doc)
        for violation in file_result.violations:
            violation.file = str(path)
        result.violations.extend(file_result.violations)
        result.activities_count += file_result.activities_count
        result.backbones_count += file_result.backbones_count
        result.stories_count += file_result.stories_count

    return result, load_errors


# =============================================================================
# OUTPUT FORMATTING
# =============================================================================


def print_result(result: ValidationResult) -> None:
    """Print validation results."""
    if result.violations:
        print("\nViolations:")
        for violation in result.violations:
            print(f"  {violation}")

    print("\n" + "=" * 60)
    print("STORY MAP VALIDATION SUMMARY")
    print("=" * 60)
    print(f"""
  Files checked:    {result.files_checked}
  Activities:       {result.activities_count}
  Backbones:        {result.backbones_count}
  Stories:          {result.stories_count}

  Violations:       {len(result.violations)}
""")

    if result.is_valid:
        print("All validations passed!")
    else:
        print(f"Found {len(result.violations)} violation(s)")

    print("=" * 60)


# =============================================================================
# CLI ENTRY POINT
# =============================================================================


def story_map_validate_command(paths: list[Path], quiet: bool = False) -> int:
    """Run the validate command.

    Args:
        paths: Story map files to validate
        quiet: Only show the summary

    Returns:
        0 if valid, 1 if violations, 2 if a file could not be loaded
    """
    result, load_errors = validate_files(paths)

    for message in load_errors:
        print(f"Error: {message}")

    if quiet:
        print(f"{len(result.violations)} violation(s) in {result.files_checked} file(s)")
    else:
        print_result(result)

    if load_errors:
        return 2
    return 0 if result.is_valid else 1
