"""
Exception hierarchy shared by every stage of the pipeline.

Per-record and per-connection errors are caught at the loop that owns
them and logged; configuration and startup errors propagate to the CLI,
which turns them into a non-zero exit status.
"""


class DolysisError(Exception):
    """Base exception for all pipeline errors."""
    pass


class ConfigError(DolysisError):
    """Raised when a filter, join or execute configuration is invalid."""
    pass


class RecordError(DolysisError):
    """Raised when a record cannot be encoded or decoded."""
    pass


class RecordDecodeError(RecordError):
    """Raised when a frame does not hold a valid record."""
    pass


class FrameTooLargeError(RecordError):
    """Raised when a frame's length prefix exceeds the configured maximum."""

    def __init__(self, length: int, limit: int):
        super().__init__(f"Frame of {length} bytes exceeds limit of {limit} bytes")
        self.length = length
        self.limit = limit


class PriorityError(DolysisError):
    """Raised when an executable's name carries an unusable priority prefix."""
    pass


class RecipeError(DolysisError):
    """Raised when a build recipe cannot be rendered."""
    pass


class ArtifactNotFoundError(RecipeError):
    """Raised when the artifact a recipe copies does not exist."""

    def __init__(self, path: str, reason: str = "not found"):
        super().__init__(f"Build artifact {path} {reason}")
        self.path = path
        self.reason = reason
