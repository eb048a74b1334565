"""
YAML loader and serializer for story map documents.

Reads two layouts:
- flat: activities / backbones / personas / ... at the root
- legacy: everything under `integrated_story_map`, with activities and
  backbones in `story_map_structure`, personas in `personas_stories`,
  the version order in `version_definitions.order` and story text in `story`

Both are returned as the flat layout. dump_document() always writes the flat
layout.
"""

from __future__ import annotations

from collections.abc import Mapping
from pathlib import Path
from typing import Any

try:
    import yaml
except ImportError:
    raise ImportError("pyyaml is required. Install with: pip install pyyaml")

from storymap.errors import DocumentLoadError


LEGACY_ROOT_KEY = "integrated_story_map"

# Flat layout keys, in the order they are written
DOCUMENT_KEYS = [
    "activities",
    "backbones",
    "version_order",
    "display_order",
    "story_mapping",
    "personas",
    "cross_persona_stories",
]


# =============================================================================
# LEGACY LAYOUT
# =============================================================================


def convert_legacy_story(story: Any) -> Any:
    """Move legacy `story` text to `text` (leaves non-mappings alone)."""
    if not isinstance(story, Mapping):
        return story
    converted = dict(story)
    if "text" not in converted and "story" in converted:
        converted["text"] = converted.pop("story")
    return converted


def _convert_story_list(stories: Any) -> Any:
    if not isinstance(stories, list):
        return stories
    return [convert_legacy_story(story) for story in stories]


def convert_legacy_document(story_map: Mapping) -> dict[str, Any]:
    """Convert an `integrated_story_map` body to the flat layout.

    Keys absent from the legacy document stay absent so the validator can
    report them.
    """
    doc: dict[str, Any] = {}

    structure = story_map.get("story_map_structure")
    if isinstance(structure, Mapping):
        for key in ("activities", "backbones"):
            if key in structure:
                doc[key] = structure[key]

    version_definitions = story_map.get("version_definitions")
    if isinstance(version_definitions, Mapping) and "order" in version_definitions:
        doc["version_order"] = version_definitions["order"]

    for key in ("display_order", "story_mapping"):
        if key in story_map:
            doc[key] = story_map[key]

    personas = story_map.get("personas_stories")
    if isinstance(personas, Mapping):
        doc["personas"] = {}
        for persona_key, persona in personas.items():
            if isinstance(persona, Mapping):
                persona = dict(persona)
                if "stories" in persona:
                    persona["stories"] = _convert_story_list(persona["stories"])
            doc["personas"][persona_key] = persona
    elif personas is not None:
        doc["personas"] = personas

    if "cross_persona_stories" in story_map:
        doc["cross_persona_stories"] = _convert_story_list(story_map["cross_persona_stories"])

    return doc


# =============================================================================
# LOADING
# =============================================================================


def document_from_data(data: Any, source: str = "<data>") -> dict[str, Any]:
    """Normalize parsed YAML data into a flat-layout document.

    Raises:
        DocumentLoadError: if the data has no mapping root
    """
    if data is None:
        raise DocumentLoadError(f"{source}: document is empty")
    if not isinstance(data, Mapping):
        raise DocumentLoadError(
            f"{source}: document root must be a mapping, got {type(data).__name__}"
        )

    if LEGACY_ROOT_KEY in data:
        story_map = data[LEGACY_ROOT_KEY]
        if not isinstance(story_map, Mapping):
            raise DocumentLoadError(f"{source}: {LEGACY_ROOT_KEY} must be a mapping")
        return convert_legacy_document(story_map)

    return dict(data)


def parse_document(text: str, source: str = "<string>") -> dict[str, Any]:
    """Parse YAML text into a flat-layout document."""
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise DocumentLoadError(f"{source}: invalid YAML: {e}") from e
    return document_from_data(data, source)


def load_document(path: Path | str) -> dict[str, Any]:
    """Load a story map YAML file.

    Raises:
        DocumentLoadError: if the file is missing, unreadable or not a story map
    """
    file_path = Path(path)
    if not file_path.exists():
        raise DocumentLoadError(f"File not found: {file_path}")
    try:
        text = file_path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise DocumentLoadError(f"{file_path}: cannot read file: {e}") from e
    return parse_document(text, str(file_path))


# =============================================================================
# SERIALIZATION
# =============================================================================


def _plain(value: Any) -> Any:
    """Convert mappings/sequences to plain dicts/lists for yaml.safe_dump."""
    if isinstance(value, Mapping):
        return {key: _plain(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_plain(item) for item in value]
    return value


def dump_document(doc: Mapping) -> str:
    """Serialize a document to YAML in the flat layout.

    Known keys are written first in DOCUMENT_KEYS order, then any extra keys
    in their original order.
    """
    ordered: dict[str, Any] = {}
    for key in DOCUMENT_KEYS:
        if key in doc:
            ordered[key] = doc[key]
    for key, value in doc.items():
        if key not in ordered:
            ordered[key] = value

    return yaml.safe_dump(
        _plain(ordered),
        sort_keys=False,
        allow_unicode=True,
        default_flow_style=False,
        width=120,
    )
