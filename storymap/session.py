"""
Edit staging for story map documents.

An EditSession collects additions, field updates, deletions and moves without
touching the loaded document. build_preview() applies them to a deep copy and
renormalizes story_mapping sequences; build_committed() hands that preview to
a serializer.

Usage:
    session = EditSession(serializer=dump_document)
    draft = session.create_draft(doc["personas"], backbone_id="BB-002")
    session.stage_update(draft["id"], {"text": "I want to export, So that ..."})
    session.stage_move("ST-001", backbone_id="BB-002", sequence=1)
    preview = session.build_preview(doc)
    yaml_text = session.build_committed(doc)
"""

from __future__ import annotations

import copy
import math
import shutil
import time
from collections.abc import Callable, Iterator, Mapping
from pathlib import Path
from typing import Any

from storymap.config import StoryMapConfig
from storymap.errors import SerializerUnavailable
from storymap.schema import (
    DEFAULT_VERSION,
    DRAFT_SEQUENCE,
    StagedAddition,
    StagedMove,
    Story,
    StoryStatus,
    is_identifier,
    is_number,
)
from storymap.util import print_info, write_text

Serializer = Callable[[dict], Any]


# =============================================================================
# DOCUMENT HELPERS
# =============================================================================


def _story_id(story: Any) -> Any:
    if isinstance(story, Mapping) and is_identifier(story.get("id")):
        return story["id"]
    return None


def iter_stories(doc: Mapping) -> Iterator[dict]:
    """Yield every story mapping: personas in order, then cross-persona stories."""
    personas = doc.get("personas")
    if isinstance(personas, Mapping):
        for persona in personas.values():
            if isinstance(persona, Mapping) and isinstance(persona.get("stories"), list):
                for story in persona["stories"]:
                    if isinstance(story, dict):
                        yield story
    cross = doc.get("cross_persona_stories")
    if isinstance(cross, list):
        for story in cross:
            if isinstance(story, dict):
                yield story


def find_stories(doc: Mapping, story_id: Any) -> list[dict]:
    """All story mappings with the given ID."""
    return [story for story in iter_stories(doc) if _story_id(story) == story_id]


def _story_mapping(doc: dict) -> dict:
    """The document's story_mapping, created when absent."""
    mapping = doc.get("story_mapping")
    if not isinstance(mapping, dict):
        mapping = {}
        doc["story_mapping"] = mapping
    return mapping


def _sequence_key(value: Any) -> float:
    if is_number(value) and not math.isnan(value):
        return value
    return DRAFT_SEQUENCE


def renormalize_sequences(doc: dict) -> None:
    """Renumber story_mapping sequences 1..n per backbone.

    Entries are ordered by current sequence (missing or non-numeric counts as
    DRAFT_SEQUENCE), ties by story ID. The new rank is mirrored into each
    matching story's backbone_x_version_sort.
    """
    mapping = doc.get("story_mapping")
    if not isinstance(mapping, dict):
        return

    groups: dict[Any, list[tuple[float, str, Any]]] = {}
    for story_id, entry in mapping.items():
        if not isinstance(entry, dict) or not is_identifier(entry.get("backbone_id")):
            continue
        groups.setdefault(entry["backbone_id"], []).append(
            (_sequence_key(entry.get("sequence")), str(story_id), story_id)
        )

    stories_by_id: dict[Any, list[dict]] = {}
    for story in iter_stories(doc):
        story_id = _story_id(story)
        if story_id is not None:
            stories_by_id.setdefault(story_id, []).append(story)

    for members in groups.values():
        members.sort(key=lambda member: (member[0], member[1]))
        for rank, (_, _, story_id) in enumerate(members, start=1):
            mapping[story_id]["sequence"] = rank
            for story in stories_by_id.get(story_id, []):
                story["backbone_x_version_sort"] = rank


def assign_backbone_version_sort(doc: dict, default_version: str = DEFAULT_VERSION) -> int:
    """Rank every story 1..n within its (backbone_id, version) group.

    Covers persona and cross-persona stories, with or without a story_mapping
    entry. Stories are ordered by story_mapping sequence (missing or
    non-numeric last), then by ID. Stories without a backbone_id are skipped.

    Returns:
        Number of stories ranked
    """
    mapping = doc.get("story_mapping")
    if not isinstance(mapping, Mapping):
        mapping = {}

    groups: dict[tuple[Any, str], list[dict]] = {}
    for story in iter_stories(doc):
        if not is_identifier(story.get("backbone_id")):
            continue
        version = story.get("version")
        label = default_version if version is None or version == "" else str(version)
        groups.setdefault((story["backbone_id"], label), []).append(story)

    def order_key(story: dict) -> tuple[float, str]:
        story_id = _story_id(story)
        entry = mapping.get(story_id) if story_id is not None else None
        sequence = entry.get("sequence") if isinstance(entry, Mapping) else None
        unmapped = not is_number(sequence) or math.isnan(sequence)
        return (math.inf if unmapped else sequence, str(story.get("id", "")))

    ranked = 0
    for stories in groups.values():
        stories.sort(key=order_key)
        for rank, story in enumerate(stories, start=1):
            story["backbone_x_version_sort"] = rank
        ranked += len(stories)
    return ranked


# =============================================================================
# EDIT SESSION
# =============================================================================


class EditSession:
    """Stages edits against a story map document.

    Not thread-safe: one session per editing context.
    """

    def __init__(
        self,
        serializer: Serializer | None = None,
        draft_prefix: str | None = None,
        config: StoryMapConfig | None = None,
    ) -> None:
        self.config = config or StoryMapConfig()
        self.serializer = serializer
        self.draft_prefix = (
            draft_prefix
            or self.config.draft_prefix
            or f"DRAFT-{int(time.time() * 1000)}"
        )
        self._draft_counter = 0
        self.reset()

    def reset(self) -> None:
        """Discard every staged change."""
        self.added: dict[str, StagedAddition] = {}
        self.updated: dict[Any, dict] = {}
        self.deleted: set[Any] = set()
        self.moved: dict[Any, StagedMove] = {}

    @property
    def has_changes(self) -> bool:
        return bool(self.added or self.updated or self.deleted or self.moved)

    # -------------------------------------------------------------------------
    # Staging
    # -------------------------------------------------------------------------

    def create_draft(
        self,
        personas: Mapping | None,
        backbone_id: str,
        version: str | None = None,
        persona_key: str | None = None,
    ) -> dict:
        """Create a new draft story in `backbone_id` and stage it.

        The draft goes to `persona_key`, else the first persona in `personas`,
        else the configured default persona. It is ranked last in its backbone
        until the next preview renormalizes sequences.

        Returns:
            A copy of the new story mapping
        """
        if persona_key is None:
            persona_key = next(iter(personas or {}), None) or self.config.default_persona_key

        self._draft_counter += 1
        story = Story(
            id=f"{self.draft_prefix}-{self._draft_counter}",
            text=self.config.draft_text,
            backbone_id=backbone_id,
            version=version or self.config.default_version,
            priority=3,
            acceptance_criteria=[],
            status=StoryStatus.TODO,
            backbone_x_version_sort=0,
        ).to_document()

        self.added[story["id"]] = StagedAddition(story=story, persona_key=str(persona_key))
        self.moved[story["id"]] = StagedMove(
            backbone_id=backbone_id, version=story["version"], sequence=math.inf
        )
        return copy.deepcopy(story)

    def stage_update(self, story_id: Any, patch: Mapping) -> None:
        """Queue field changes for a story. Later values win per field."""
        queued = self.updated.setdefault(story_id, {})
        queued.update(copy.deepcopy(dict(patch)))

    def stage_delete(self, story_id: Any) -> None:
        """Queue a deletion. Unsaved drafts are simply dropped."""
        if story_id in self.added:
            del self.added[story_id]
            self.moved.pop(story_id, None)
            self.updated.pop(story_id, None)
            return
        self.deleted.add(story_id)
        self.updated.pop(story_id, None)
        self.moved.pop(story_id, None)

    def stage_move(
        self,
        story_id: Any,
        backbone_id: str | None = None,
        version: str | None = None,
        sequence: float | None = None,
    ) -> None:
        """Queue a position change. Later values win per field."""
        current = self.moved.get(story_id) or StagedMove()
        self.moved[story_id] = current.merged(
            backbone_id=backbone_id, version=version, sequence=sequence
        )

    # -------------------------------------------------------------------------
    # Preview / commit
    # -------------------------------------------------------------------------

    def _apply_deletions(self, doc: dict) -> None:
        if not self.deleted:
            return
        personas = doc.get("personas")
        if isinstance(personas, Mapping):
            for persona in personas.values():
                if isinstance(persona, dict) and isinstance(persona.get("stories"), list):
                    persona["stories"] = [
                        s for s in persona["stories"] if _story_id(s) not in self.deleted
                    ]
        if isinstance(doc.get("cross_persona_stories"), list):
            doc["cross_persona_stories"] = [
                s for s in doc["cross_persona_stories"] if _story_id(s) not in self.deleted
            ]
        mapping = doc.get("story_mapping")
        if isinstance(mapping, dict):
            for story_id in [k for k in mapping if k in self.deleted]:
                del mapping[story_id]

    def _apply_additions(self, doc: dict) -> None:
        if not self.added:
            return
        if doc.get("personas") is None:
            doc["personas"] = {}
        personas = doc["personas"]
        if not isinstance(personas, dict):
            return

        for story_id, addition in self.added.items():
            persona = personas.get(addition.persona_key)
            if not isinstance(persona, dict):
                persona = {"name": addition.persona_key, "role": "", "stories": []}
                personas[addition.persona_key] = persona
            if persona.get("stories") is None:
                persona["stories"] = []
            stories = persona["stories"]
            if not isinstance(stories, list):
                continue
            if not any(_story_id(s) == story_id for s in stories):
                stories.append(copy.deepcopy(addition.story))
            _story_mapping(doc)[story_id] = {
                "backbone_id": addition.story["backbone_id"],
                "sequence": DRAFT_SEQUENCE,
            }

    def _apply_updates(self, doc: dict) -> None:
        for story_id, patch in self.updated.items():
            for story in find_stories(doc, story_id):
                story.update(copy.deepcopy(patch))

    def _apply_moves(self, doc: dict) -> None:
        for story_id, move in self.moved.items():
            if story_id in self.deleted:
                continue
            mapping = _story_mapping(doc)
            entry = mapping.get(story_id)
            entry = dict(entry) if isinstance(entry, Mapping) else {}
            if move.backbone_id is not None:
                entry["backbone_id"] = move.backbone_id
            if move.sequence is not None:
                entry["sequence"] = move.sequence
            mapping[story_id] = entry

            for story in find_stories(doc, story_id):
                if move.backbone_id is not None:
                    story["backbone_id"] = move.backbone_id
                if move.version:
                    story["version"] = move.version

    def build_preview(self, base_doc: Mapping) -> dict:
        """Apply the staged delta to a deep copy of `base_doc`.

        Order: deletions, additions, field updates, moves, then sequence
        renormalization. `base_doc` is never modified.
        """
        doc = copy.deepcopy(dict(base_doc))
        self._apply_deletions(doc)
        self._apply_additions(doc)
        self._apply_updates(doc)
        self._apply_moves(doc)
        renormalize_sequences(doc)
        return doc

    def build_committed(self, base_doc: Mapping) -> Any:
        """Build the preview and pass it to the serializer.

        Raises:
            SerializerUnavailable: if the session has no serializer
        """
        if self.serializer is None:
            raise SerializerUnavailable("No document serializer configured for this session")
        return self.serializer(self.build_preview(base_doc))


# =============================================================================
# CLI ENTRY POINT
# =============================================================================


def backup_file(path: Path) -> Path:
    """Copy `path` to `<path>.bak_sort_<epoch ms>` and return the copy's path."""
    backup_path = path.with_name(f"{path.name}.bak_sort_{int(time.time() * 1000)}")
    shutil.copy2(path, backup_path)
    return backup_path


def story_map_renumber_command(
    doc: Mapping,
    serializer: Serializer,
    output_path: Path | None = None,
    config: StoryMapConfig | None = None,
    backup: bool = False,
) -> int:
    """Renumber story ranks and write the document.

    story_mapping sequences become 1..n per backbone (an empty session
    preview), then every story gets backbone_x_version_sort 1..n within its
    (backbone_id, version) group, stories without a mapping entry included.

    Args:
        doc: Loaded document
        serializer: Document -> text
        output_path: Where to write (default: stdout)
        config: Default version label for stories without one
        backup: Copy an existing output file aside before overwriting it
    """
    session = EditSession(serializer=serializer, config=config)
    preview = session.build_preview(doc)
    ranked = assign_backbone_version_sort(preview, session.config.default_version)
    text = serializer(preview)

    if output_path is None:
        print(text, end="")
        return 0

    if backup and output_path.exists():
        print_info(f"Backup created at {backup_file(output_path)}")
    write_text(output_path, text)
    print_info(f"Renumbered {ranked} stories, written to {output_path}")
    return 0
