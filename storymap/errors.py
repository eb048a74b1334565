"""Exceptions raised by storymap.

Data quality problems are reported as violations, not raised. These
exceptions cover structural and environment failures only.
"""


class StoryMapError(Exception):
    """Base class for storymap errors."""


class FatalShapeError(StoryMapError, ValueError):
    """Raised when a document has no analyzable root."""

    def __init__(self, message: str, path: str = "root") -> None:
        super().__init__(message)
        self.path = path


class SerializerUnavailable(StoryMapError, RuntimeError):
    """Raised by EditSession.build_committed when no serializer is configured."""


class DocumentLoadError(StoryMapError):
    """Raised when a story map file cannot be read or parsed."""


class ConfigError(StoryMapError):
    """Raised when a storymap config file is missing or invalid."""
