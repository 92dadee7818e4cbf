"""
Loading combat snapshots exported by the host game.

A snapshot is one ``Combat`` record serialized as JSON or YAML. Files
ending in ``.yaml``/``.yml`` are read with PyYAML, everything else as JSON.
"""

import json
import logging
from pathlib import Path

import yaml

from .models import Combat

logger = logging.getLogger("npc-tactician")

YAML_SUFFIXES = {".yaml", ".yml"}


class SnapshotError(Exception):
    """Raised when a combat snapshot cannot be read."""
    pass


def load_combat(path: Path | str) -> Combat:
    """Read and validate a combat snapshot file.

    Raises:
        SnapshotError: If the file is missing, unparseable or not a combat record.
    """
    path = Path(path)
    if not path.is_file():
        raise SnapshotError(f"Combat snapshot not found: {path}")

    text = path.read_text(encoding="utf-8")
    try:
        if path.suffix.lower() in YAML_SUFFIXES:
            data = yaml.safe_load(text)
        else:
            data = json.loads(text)
    except (yaml.YAMLError, json.JSONDecodeError) as e:
        raise SnapshotError(f"Could not parse combat snapshot {path}: {e}") from e

    if not isinstance(data, dict):
        raise SnapshotError(f"Combat snapshot {path} does not contain a combat record")

    try:
        combat = Combat.model_validate(data)
    except ValueError as e:
        raise SnapshotError(f"Invalid combat snapshot {path}: {e}") from e

    logger.debug(f"Loaded combat '{combat.id}' with {len(combat.combatants)} combatants from {path}")
    return combat


__all__ = ["SnapshotError", "load_combat"]
