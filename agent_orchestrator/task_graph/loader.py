"""
Loader for task graph plan files (JSON or YAML).
"""

import json
import logging
from pathlib import Path
from typing import Union

import yaml

from .dag import TaskGraph

logger = logging.getLogger(__name__)

YAML_SUFFIXES = {".yaml", ".yml"}


def load_graph_file(path: Union[str, Path]) -> TaskGraph:
    """
    Load a task graph from a plan file.

    Args:
        path: Path to a ``.json``, ``.yaml`` or ``.yml`` file

    Returns:
        The deserialized TaskGraph (not validated)

    Raises:
        ValueError: If the file does not contain a mapping or a task
            graph can not be built from it
    """
    path = Path(path)
    with open(path, "r", encoding="utf-8") as f:
        if path.suffix.lower() in YAML_SUFFIXES:
            data = yaml.safe_load(f)
        else:
            data = json.load(f)

    if not isinstance(data, dict):
        raise ValueError(f"Plan file {path} must contain a mapping at top level")

    try:
        graph = TaskGraph.from_dict(data)
    except (KeyError, TypeError) as e:
        raise ValueError(f"Plan file {path} is malformed: missing or invalid {e}") from e

    logger.info(f"Loaded graph '{graph.product}' with {len(graph)} task(s) from {path}")
    return graph


def dump_graph_file(graph: TaskGraph, path: Union[str, Path]) -> None:
    """Write a task graph to a JSON or YAML file."""
    path = Path(path)
    with open(path, "w", encoding="utf-8") as f:
        if path.suffix.lower() in YAML_SUFFIXES:
            yaml.safe_dump(graph.to_dict(), f, sort_keys=False, allow_unicode=True)
        else:
            json.dump(graph.to_dict(), f, ensure_ascii=False, indent=2)
