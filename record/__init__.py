"""Output writers."""

from .artifact import artifact_path, read_artifact, write_artifact
from .atomic import atomic_open

__all__ = ["artifact_path", "atomic_open", "read_artifact", "write_artifact"]
