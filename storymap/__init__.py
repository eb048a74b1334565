"""
Story Map - grid composition and edit staging for story map documents.

This package provides:
- Validation of story map documents (missing fields, broken references)
- Composition of a document into a collision-free grid of version bands
- Edit staging with previews and committed output

Usage:
    storymap validate story_map.yaml
    storymap grid story_map.yaml
    storymap renumber story_map.yaml --in-place
    storymap options story_map.yaml
"""

from storymap.compose import compose
from storymap.config import StoryMapConfig, load_config
from storymap.errors import (
    ConfigError,
    DocumentLoadError,
    FatalShapeError,
    SerializerUnavailable,
    StoryMapError,
)
from storymap.loader import dump_document, load_document, parse_document
from storymap.options import build_edit_options
from storymap.schema import (
    EditOptions,
    PlacedStory,
    RenderGrid,
    Story,
    StoryStatus,
)
from storymap.session import EditSession
from storymap.validate import Violation, ViolationCategory, validate

__all__ = [
    # Core
    "compose",
    "validate",
    "EditSession",
    "build_edit_options",
    # Models
    "EditOptions",
    "PlacedStory",
    "RenderGrid",
    "Story",
    "StoryStatus",
    "Violation",
    "ViolationCategory",
    # Config / IO
    "StoryMapConfig",
    "load_config",
    "load_document",
    "parse_document",
    "dump_document",
    # Errors
    "StoryMapError",
    "FatalShapeError",
    "SerializerUnavailable",
    "DocumentLoadError",
    "ConfigError",
]
