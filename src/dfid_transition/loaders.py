"""Data Loader Module

Provides utilities to load query results describing research outputs from
JSON files. Supports the W3C SPARQL JSON results format as well as plain
lists of already-flattened rows.
"""

import json
import logging
from pathlib import Path
from typing import Any, Dict, List

from .models import Solution

logger = logging.getLogger(__name__)


def load_bindings(path: str | Path) -> List[Dict[str, Any]]:
    """Load raw result rows from a JSON file.

    Supports flexible input formats:
      - SPARQL JSON results: {"head": {...}, "results": {"bindings": [...]}}
      - Direct list of rows: [{...}, {...}, ...]
      - Wrapped in 'solutions' key: {"solutions": [...]}

    Args:
        path: File path to JSON file containing query results

    Returns:
        List of row dictionaries (bindings or flat rows)

    Raises:
        FileNotFoundError: If file does not exist
        json.JSONDecodeError: If file is not valid JSON
    """
    path = Path(path)
    with path.open("r", encoding="utf-8") as f:
        data = json.load(f)
    if isinstance(data, list):
        return data
    # fall back if wrapped
    results = data.get("results")
    if isinstance(results, dict):
        return results.get("bindings") or []
    return data.get("solutions") or []


def load_solutions(path: str | Path) -> List[Solution]:
    """Load query results and convert each row to a Solution.

    Rows that are not JSON objects are skipped with a warning.
    """
    solutions: List[Solution] = []
    for idx, binding in enumerate(load_bindings(path)):
        if not isinstance(binding, dict):
            logger.warning("Skipping row %d: expected an object, got %s", idx, type(binding).__name__)
            continue
        solutions.append(Solution.from_binding(binding))
    return solutions
