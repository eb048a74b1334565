"""Option lists for story editors (persona, version and backbone pickers)."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

import yaml

from storymap.compose import order_columns, order_versions, version_label
from storymap.config import StoryMapConfig
from storymap.schema import (
    BackboneOption,
    EditOptions,
    PersonaOption,
    is_identifier,
)
from storymap.session import iter_stories


def build_edit_options(doc: Any, config: StoryMapConfig | None = None) -> EditOptions:
    """Project a document into editor option lists.

    Versions are every label in version_order (or the configured default
    order when the document has none) plus every label used by a story, in
    grid band order. Backbones follow grid column order.
    """
    config = config or StoryMapConfig()
    if not isinstance(doc, Mapping):
        return EditOptions()

    personas = []
    raw_personas = doc.get("personas")
    if isinstance(raw_personas, Mapping):
        for key, persona in raw_personas.items():
            name = persona.get("name") if isinstance(persona, Mapping) else None
            personas.append(PersonaOption(key=str(key), name=str(name or key)))

    preferred = doc.get("version_order")
    if not isinstance(preferred, list):
        preferred = config.version_order
    labels = {
        str(label)
        for label in preferred
        if isinstance(label, (str, int, float)) and not isinstance(label, bool)
    }
    labels.update(version_label(story, config.default_version) for story in iter_stories(doc))
    versions = order_versions(labels, preferred)

    backbones = [
        BackboneOption(
            id=str(backbone["id"]),
            name=str(backbone.get("name") or backbone["id"]),
            activity_id=str(backbone["activity_id"]) if is_identifier(backbone.get("activity_id")) else None,
        )
        for backbone in order_columns(doc)
        if is_identifier(backbone.get("id"))
    ]

    return EditOptions(personas=personas, versions=versions, backbones=backbones)


def story_map_options_command(doc: Any, config: StoryMapConfig | None = None) -> int:
    """Print the editor option lists as YAML."""
    options = build_edit_options(doc, config)
    print(yaml.safe_dump(options.model_dump(), sort_keys=False, allow_unicode=True), end="")
    return 0
