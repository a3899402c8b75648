"""JSON output artifacts for processed video pairs."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict

from contracts.versioning import SCHEMA_VERSION
from exceptions import FileWriteError
from log_config.logger import get_logger
from record.atomic import atomic_open

logger = get_logger(__name__)

DEFAULT_PREFIX = "DE_"
DEFAULT_SUFFIX = ".json"


def artifact_path(
    artifact_dir: Path, job_id: str, prefix: str = DEFAULT_PREFIX, suffix: str = DEFAULT_SUFFIX
) -> Path:
    return Path(artifact_dir) / f"{prefix}{job_id}{suffix}"


def write_artifact(path: Path, document: Dict[str, Any]) -> Path:
    """Serialize ``document`` to ``path`` atomically.

    Raises:
        FileWriteError: If the document cannot be serialized or written
    """
    try:
        text = json.dumps(document, indent=2)
    except (TypeError, ValueError) as e:
        raise FileWriteError(f"Artifact for {path} is not JSON serializable: {e}")
    with atomic_open(path, "w") as handle:
        handle.write(text)
    logger.info(f"Wrote artifact {path}")
    return Path(path)


def read_artifact(path: Path) -> Dict[str, Any]:
    """Load an artifact and return its payload.

    Raises:
        ValueError: If the file is not a versioned artifact
    """
    document = json.loads(Path(path).read_text())
    if not isinstance(document, dict) or "payload" not in document:
        raise ValueError(f"{path} is not an artifact envelope")
    if document.get("schema_version") != SCHEMA_VERSION:
        logger.warning(
            f"{path}: schema {document.get('schema_version')} differs from {SCHEMA_VERSION}"
        )
    return document["payload"]
