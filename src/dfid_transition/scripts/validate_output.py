"""Output Validation Script

Validates that a generated payloads JSON file is ready for the publishing API:
  - Each record has a 'payload' object and a 'links' object
  - Required content item fields are present and correctly typed
  - Routes contain exactly one 'exact' route matching base_path
  - base_path values are unique across the whole file
  - Organisation links are present

Usage:
    python -m src.dfid_transition.scripts.validate_output \\
        --path output/payloads.json

Exits with code 0 on success, 1 on validation failure, 2 on argument error.
"""

#!/usr/bin/env python
import argparse
import json
from pathlib import Path
from typing import Any, Dict, List, Tuple

from src.dfid_transition.config import BASE_PATH_PREFIX

REQUIRED_STRING_FIELDS = [
    "content_id",
    "base_path",
    "title",
    "document_type",
    "schema_name",
    "publishing_app",
    "rendering_app",
    "locale",
    "phase",
    "public_updated_at",
    "update_type",
]

EXPECTED_METADATA_KEYS = [
    "country",
    "first_published_at",
    "dfid_document_type",
    "dfid_review_status",
    "dfid_theme",
]


def load_records(path: Path) -> List[Dict[str, Any]]:
    """Load payload records from a JSON file.

    Supports:
      - a JSON array of objects
      - newline-delimited JSON (JSONL)
    """
    with path.open("r", encoding="utf-8") as f:
        content = f.read().strip()

    # Try: full file is a single JSON array
    try:
        data = json.loads(content)
        if isinstance(data, list):
            return data
        else:
            raise ValueError("Top-level JSON is not a list of records.")
    except json.JSONDecodeError:
        pass  # fall through to JSONL

    # Try: JSON Lines (one JSON object per line)
    records: List[Dict[str, Any]] = []
    for line_no, line in enumerate(content.splitlines(), start=1):
        line = line.strip()
        if not line:
            continue
        try:
            obj = json.loads(line)
        except json.JSONDecodeError as e:
            raise ValueError(
                f"Failed to parse JSON on line {line_no}: {e}"
            ) from e
        if not isinstance(obj, dict):
            raise ValueError(
                f"Line {line_no} JSON is not an object (got {type(obj)})"
            )
        records.append(obj)

    if not records:
        raise ValueError("No records found in file.")

    return records


def validate_record(record: Dict[str, Any], idx: int) -> Tuple[List[str], List[str]]:
    """Validate a single payload record.

    Returns:
        (errors, warnings)
    """
    errors: List[str] = []
    warnings: List[str] = []

    payload = record.get("payload")
    if payload is None:
        errors.append(f"[idx={idx}] missing 'payload'")
        return errors, warnings
    if not isinstance(payload, dict):
        errors.append(
            f"[idx={idx}] 'payload' should be an object, got {type(payload).__name__}"
        )
        return errors, warnings

    # --- required string fields ---
    for field in REQUIRED_STRING_FIELDS:
        value = payload.get(field)
        if value is None:
            errors.append(f"[idx={idx}] payload missing required '{field}'")
        elif not isinstance(value, str):
            errors.append(
                f"[idx={idx}] payload.{field} should be a string, got {type(value).__name__}"
            )
        elif not value.strip():
            errors.append(f"[idx={idx}] payload.{field} is empty")

    base_path = payload.get("base_path")
    if isinstance(base_path, str) and not base_path.startswith(BASE_PATH_PREFIX + "/"):
        errors.append(f"[idx={idx}] base_path {base_path!r} is outside {BASE_PATH_PREFIX}")

    # --- routes ---
    routes = payload.get("routes")
    if not isinstance(routes, list) or len(routes) != 1:
        errors.append(f"[idx={idx}] 'routes' should be a list with one route")
    else:
        route = routes[0]
        if not isinstance(route, dict) or route.get("type") != "exact":
            errors.append(f"[idx={idx}] route should be of type 'exact'")
        elif route.get("path") != base_path:
            errors.append(
                f"[idx={idx}] route path {route.get('path')!r} != base_path {base_path!r}"
            )

    if payload.get("redirects") != []:
        warnings.append(f"[idx={idx}] 'redirects' is expected to be an empty list")

    # --- details ---
    details = payload.get("details")
    if not isinstance(details, dict):
        errors.append(f"[idx={idx}] 'details' should be an object")
    else:
        if not isinstance(details.get("body"), str):
            errors.append(f"[idx={idx}] details.body should be a string")
        elif not details["body"].strip():
            warnings.append(f"[idx={idx}] details.body is empty")

        metadata = details.get("metadata")
        if not isinstance(metadata, dict):
            errors.append(f"[idx={idx}] details.metadata should be an object")
        else:
            for key in EXPECTED_METADATA_KEYS:
                if key not in metadata:
                    warnings.append(
                        f"[idx={idx}] metadata missing expected field '{key}'"
                    )

        if "attachments" in details and not details["attachments"]:
            errors.append(f"[idx={idx}] details.attachments present but empty")

    # --- links ---
    links = record.get("links")
    if not isinstance(links, dict) or not links.get("organisations"):
        errors.append(f"[idx={idx}] links.organisations missing or empty")

    return errors, warnings


def find_duplicate_base_paths(records: List[Dict[str, Any]]) -> List[str]:
    """Return an error for every base_path used by more than one record."""
    first_seen: Dict[str, int] = {}
    errors: List[str] = []
    for idx, record in enumerate(records):
        payload = record.get("payload")
        base_path = payload.get("base_path") if isinstance(payload, dict) else None
        if not isinstance(base_path, str):
            continue
        if base_path in first_seen:
            errors.append(
                f"[idx={idx}] duplicate base_path {base_path} (first seen at idx={first_seen[base_path]})"
            )
        else:
            first_seen[base_path] = idx
    return errors


def main(argv: list[str] | None = None) -> None:
    """Validate a payloads output file.

    Args:
        argv: Command-line arguments. If None, uses sys.argv[1:]

    Raises:
        SystemExit: With code 0 on success, 1 on validation failure
    """
    parser = argparse.ArgumentParser(
        description="Validate research output payloads JSON."
    )
    parser.add_argument(
        "--path",
        type=str,
        required=True,
        help="Path to payloads.json",
    )
    args = parser.parse_args(argv)

    path = Path(args.path)

    try:
        records = load_records(path)
    except Exception as e:
        print(f"FAILED TO LOAD FILE: {e}")
        raise SystemExit(1)

    total = len(records)
    all_errors: List[str] = []
    all_warnings: List[str] = []

    for idx, record in enumerate(records):
        errors, warnings = validate_record(record, idx)
        all_errors.extend(errors)
        all_warnings.extend(warnings)

    all_errors.extend(find_duplicate_base_paths(records))

    if all_errors:
        print("VALIDATION FAILED:\n")
        for err in all_errors:
            print(err)
        print(f"\nTotal errors: {len(all_errors)}")
        if all_warnings:
            print(f"Total warnings: {len(all_warnings)}")
        raise SystemExit(1)

    print("VALIDATION PASSED")
    print(f"Total records: {total}")
    if all_warnings:
        print("\nWarnings (non-fatal):")
        for w in all_warnings:
            print(w)
        print(f"\nTotal warnings: {len(all_warnings)}")

    raise SystemExit(0)

if __name__ == "__main__":
    main()
