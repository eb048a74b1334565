"""
Configuration for storymap.

Example storymap.yml:
    default_version: MVP
    version_order: [MVP, Release1, Release2, Future]
    default_persona_key: P001
    cross_persona_label: "All users"
    draft_text: "I want , So that "
"""

from __future__ import annotations

from pathlib import Path

import yaml
from pydantic import BaseModel, Field, ValidationError

from storymap.errors import ConfigError
from storymap.schema import (
    CROSS_PERSONA_LABEL,
    DEFAULT_VERSION,
    DEFAULT_VERSION_ORDER,
)
from storymap.util import load_yaml


class StoryMapConfig(BaseModel):
    """Defaults applied when a document or caller leaves a value open."""

    default_version: str = Field(
        default=DEFAULT_VERSION, description="Version label for stories without one"
    )
    version_order: list[str] = Field(
        default_factory=lambda: list(DEFAULT_VERSION_ORDER),
        description="Bucket order used when the document has no version_order",
    )
    default_persona_key: str = Field(
        default="P001", description="Persona for drafts when the document has none"
    )
    cross_persona_label: str = Field(
        default=CROSS_PERSONA_LABEL, description="Persona name for cross-persona stories"
    )
    draft_text: str = Field(
        default="I want , So that ", description="Placeholder text for new drafts"
    )
    draft_prefix: str | None = Field(
        default=None, description="Draft ID prefix (default: DRAFT-<epoch ms>)"
    )

    model_config = {"extra": "allow"}


def load_config(path: Path | str | None = None) -> StoryMapConfig:
    """Load a StoryMapConfig from YAML, or return defaults when path is None."""
    if path is None:
        return StoryMapConfig()

    config_path = Path(path)
    if not config_path.exists():
        raise ConfigError(f"Config file not found: {config_path}")

    try:
        data = load_yaml(config_path) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {config_path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigError(f"{config_path}: config root must be a mapping")

    try:
        return StoryMapConfig.model_validate(data)
    except ValidationError as e:
        details = "; ".join(
            f"{'.'.join(str(x) for x in err['loc'])}: {err['msg']}" for err in e.errors()
        )
        raise ConfigError(f"{config_path}: {details}") from e
