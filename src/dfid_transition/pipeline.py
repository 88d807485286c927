"""
Research Output Transition Pipeline

This module turns a file of research-output query results into publishing
payloads for the specialist publisher.

Features:
- Deduplication of repeated query rows by output URI
- Batch-wide slug collision detection and disambiguation
- Concurrent attachment fetching across all documents
- Per-document failure isolation (failed documents are listed for retry)
- Timestamped versioning of outputs and run metadata
"""

from pathlib import Path
import json
from collections import defaultdict
from concurrent.futures import ThreadPoolExecutor
from typing import List, Dict, Any, Optional, Tuple
import logging
import time
from datetime import datetime

from .attachments import AttachmentFetchError, AttachmentResolver, Fetch, fetch_bytes
from .config import FETCH_MAX_WORKERS, SKIP_ATTACHMENT_FETCH
from .document import Document
from .loaders import load_solutions
from .models import Solution
from .slugs import disambiguate

logger = logging.getLogger(__name__)


def deduplicate_solutions(solutions: List[Solution]) -> Tuple[List[Solution], int]:
    """Keep the first row for each output URI.

    Rows without an output URI are kept as they are.

    Returns:
        (unique solutions, number of duplicates removed)
    """
    seen: set[str] = set()
    unique: List[Solution] = []
    duplicates = 0
    for solution in solutions:
        if not solution.output:
            logger.warning("Solution without output URI: title=%r", solution.title[:80])
            unique.append(solution)
            continue
        if solution.output in seen:
            logger.warning("Duplicate output detected: %s. Keeping first occurrence.", solution.output)
            duplicates += 1
            continue
        seen.add(solution.output)
        unique.append(solution)
    return unique, duplicates


def plan_slugs(documents: List[Document]) -> List[bool]:
    """
    Decide which documents get their original id appended to the slug.

    Documents sharing a default slug keep it for the first one; the others
    are disambiguated. A disambiguated slug can land on another document's
    default slug ("My title" #5 vs "My title 5"), in which case the holder
    of that default is disambiguated too, until nothing changes. Documents
    without an original id are never disambiguated; whatever still collides
    is left to ``divert_slug_collisions``.

    Returns:
        One flag per document, in input order
    """
    defaults = [doc.derive_default_slug() for doc in documents]
    plan = [False] * len(documents)
    seen: set[str] = set()
    for idx, slug in enumerate(defaults):
        plan[idx] = slug in seen and bool(documents[idx].original_id)
        seen.add(slug)

    changed = True
    while changed:
        changed = False
        by_slug: Dict[str, List[int]] = defaultdict(list)
        for idx, doc in enumerate(documents):
            slug = disambiguate(defaults[idx], doc.original_id) if plan[idx] else defaults[idx]
            by_slug[slug].append(idx)
        for indices in by_slug.values():
            if len(indices) < 2:
                continue
            for idx in indices:
                # Without an id, disambiguating would not change the slug.
                if not plan[idx] and documents[idx].original_id:
                    plan[idx] = True
                    changed = True
    return plan


def finalize_slugs(documents: List[Document]) -> int:
    """
    Fix the slug of every document according to ``plan_slugs``.

    Returns:
        Number of documents that were disambiguated
    """
    disambiguated = 0
    for doc, flag in zip(documents, plan_slugs(documents)):
        doc.finalize_slug(disambiguated=flag)
        if flag:
            disambiguated += 1
            logger.info(
                "Slug collision on %r: %s -> %s",
                doc.derive_default_slug(),
                doc.original_id,
                doc.base_path,
            )
    return disambiguated


def divert_slug_collisions(
    documents: List[Document],
) -> Tuple[List[Document], List[Dict[str, Any]]]:
    """
    Keep the first document for every base path and divert the rest.

    Only documents that could not be disambiguated (no original id) can
    still collide after ``finalize_slugs``; publishing them would overwrite
    another output.

    Returns:
        (documents to publish, failure records for the diverted ones)
    """
    owners: Dict[str, Document] = {}
    kept: List[Document] = []
    failures: List[Dict[str, Any]] = []
    for doc in documents:
        owner = owners.get(doc.base_path)
        if owner is None:
            owners[doc.base_path] = doc
            kept.append(doc)
            continue
        logger.error(
            "base_path %s still not unique after disambiguation (outputs %s and %s)",
            doc.base_path,
            owner.solution.output,
            doc.solution.output,
        )
        failures.append({
            "original_id": doc.original_id,
            "output": doc.solution.output,
            "retryable": False,
            "errors": {doc.base_path: f"base_path already used by {owner.solution.output}"},
        })
    return kept, failures


def assemble_payloads(
    documents: List[Document],
) -> Tuple[List[Dict[str, Any]], List[Dict[str, Any]]]:
    """
    Build payload and links records for every document.

    All attachment fetches are started before the first document waits on
    its own, so downloads for later documents proceed in the background.

    Returns:
        (records, failures) where each record is {"payload", "links"} and
        each failure describes a document that can be retried
    """
    for doc in documents:
        doc.attachments  # starts the fetches

    records: List[Dict[str, Any]] = []
    failures: List[Dict[str, Any]] = []
    log_interval = max(1, len(documents) // 10)

    for idx, doc in enumerate(documents, start=1):
        if idx == 1 or idx == len(documents) or idx % log_interval == 0:
            logger.info(
                "Assemble progress: %d/%d (%.1f%%) - Success: %d, Failed: %d",
                idx,
                len(documents),
                (idx / len(documents)) * 100,
                len(records),
                len(failures),
            )
        try:
            payload = doc.to_json()
        except AttachmentFetchError as e:
            logger.warning("Skipping output %s: %s", doc.original_id, e)
            failures.append({
                "original_id": doc.original_id,
                "output": doc.solution.output,
                "retryable": e.retryable,
                "errors": e.failures,
            })
            continue
        records.append({"payload": payload, "links": doc.links})

    return records, failures


def run_pipeline(
    input_path: Path | str = "data/solutions.json",
    output_dir: Path | str = "output",
    limit: Optional[int] = None,
    dry_run: bool = False,
    keep_history: bool = True,
    max_workers: int = FETCH_MAX_WORKERS,
    skip_attachment_fetch: bool = SKIP_ATTACHMENT_FETCH,
    fetch: Fetch = fetch_bytes,
) -> Tuple[int, int, Dict[str, Path]]:
    """
    Run the research output transition end to end.

    Pipeline Steps:
    1. Load query results from JSON
    2. Deduplicate by output URI and build documents
    3. Detect slug collisions and finalize base paths
    4. Fetch attachments and assemble payloads
    5. Save payloads, failures and run metadata

    Args:
        input_path: SPARQL JSON results file
        output_dir: Directory for all output files
        limit: Maximum documents to process (None = all)
        dry_run: Process everything but write no files
        keep_history: If True, keep timestamped versions; if False, overwrite
        max_workers: Concurrent attachment fetches
        skip_attachment_fetch: Classify attachments without downloading them
        fetch: Callable returning the bytes behind a URI

    Returns:
        Tuple of (total_solutions, assembled_payloads, output_paths_dict)

    Raises:
        FileNotFoundError: If input_path doesn't exist
        json.JSONDecodeError: If input file is invalid JSON
        OSError: If outputs cannot be written
    """
    input_path = Path(input_path)
    output_dir = Path(output_dir)

    run_timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    job_start = time.time()
    logger.debug("Starting transition run: transition_%s", run_timestamp)

    # ========== STEP 1: LOAD SOLUTIONS ==========
    t0 = time.time()
    logger.info("STEP 1/5: Loading query results")

    try:
        solutions = load_solutions(input_path)
        total = len(solutions)
        logger.info("✓ Loaded %d solutions in %.2fs", total, time.time() - t0)
    except FileNotFoundError:
        logger.exception("Input file not found: %s", input_path)
        raise
    except json.JSONDecodeError:
        logger.exception("Invalid JSON in input file: %s", input_path)
        raise
    except Exception:
        logger.exception("Failed to load solutions from %s", input_path)
        raise

    if limit is not None:
        logger.info("Applying limit: %d solutions", limit)
        solutions = solutions[:limit]

    # ========== STEP 2: DEDUPLICATE & BUILD DOCUMENTS ==========
    t1 = time.time()
    logger.info("STEP 2/5: Deduplicating %d solutions by output URI", len(solutions))
    solutions, duplicate_count = deduplicate_solutions(solutions)
    logger.info(
        "✓ Deduplication completed in %.2fs (removed %d duplicates, kept %d unique)",
        time.time() - t1,
        duplicate_count,
        len(solutions),
    )

    if not dry_run:
        output_dir.mkdir(parents=True, exist_ok=True)

    with ThreadPoolExecutor(max_workers=max_workers) as executor:
        resolver = AttachmentResolver(
            executor=executor, fetch=fetch, skip_fetch=skip_attachment_fetch
        )
        documents = [Document(solution, resolver) for solution in solutions]

        # ========== STEP 3: FINALIZE SLUGS ==========
        logger.info("STEP 3/5: Finalizing slugs for %d documents", len(documents))
        disambiguated_count = finalize_slugs(documents)
        documents, slug_failures = divert_slug_collisions(documents)
        logger.info(
            "✓ Slugs finalized (%d disambiguated, %d diverted)",
            disambiguated_count,
            len(slug_failures),
        )

        # ========== STEP 4: ATTACHMENTS & PAYLOADS ==========
        t3 = time.time()
        logger.info(
            "STEP 4/5: Fetching attachments and assembling payloads (max_workers=%d, skip_fetch=%s)",
            max_workers,
            skip_attachment_fetch,
        )
        try:
            records, failures = assemble_payloads(documents)
            failures = slug_failures + failures
        except Exception:
            logger.exception("Failed during payload assembly")
            raise
        logger.info(
            "✓ Assembly completed in %.2fs (success=%d, failed=%d)",
            time.time() - t3,
            len(records),
            len(failures),
        )

    # ========== STEP 5: SAVE OUTPUTS ==========
    output_paths: Dict[str, Path] = {}

    if dry_run:
        logger.info("DRY RUN: skipping write of payloads and run metadata")
        logger.debug(
            "Transition completed (dry run): %d solutions → %d payloads (no files written)",
            total,
            len(records),
        )
        return total, len(records), output_paths

    t4 = time.time()
    logger.info("STEP 5/5: Saving payloads")
    suffix = f"_{run_timestamp}" if keep_history else ""

    try:
        payloads_path = output_dir / f"payloads{suffix}.json"
        _write_json(payloads_path, records)
        output_paths["payloads"] = payloads_path
        logger.info(
            "✓ Wrote %d payloads to %s (%.2fs)",
            len(records),
            payloads_path.name,
            time.time() - t4,
        )

        if failures:
            failed_path = output_dir / f"failed{suffix}.json"
            _write_json(failed_path, failures)
            output_paths["failed"] = failed_path
            logger.warning("Wrote %d failures to %s", len(failures), failed_path.name)
    except Exception:
        logger.exception("Failed to save payloads")
        raise

    _save_metadata(output_dir, suffix, {
        "timestamp": run_timestamp,
        "input_file": str(input_path),
        "total_solutions": total,
        "processed": len(records),
        "failed": len(failures),
        "duplicates_removed": duplicate_count,
        "slugs_disambiguated": disambiguated_count,
        "slug_collisions_diverted": len(slug_failures),
        "attachments_fetched": not skip_attachment_fetch,
        "outputs": {k: str(v) for k, v in output_paths.items()},
        "duration_seconds": time.time() - job_start,
    })

    logger.debug(
        "Transition completed: %d solutions → %d payloads (%d failed)",
        total,
        len(records),
        len(failures),
    )

    return total, len(records), output_paths


def _write_json(path: Path, data: Any) -> None:
    with path.open("w", encoding="utf-8") as f:
        json.dump(data, f, ensure_ascii=False, indent=2)


def _save_metadata(output_dir: Path, suffix: str, metadata: Dict[str, Any]) -> None:
    """Save run metadata."""
    meta_path = output_dir / f"run_metadata{suffix}.json"
    try:
        _write_json(meta_path, metadata)
        logger.info("✓ Saved: %s", meta_path.name)
    except Exception:
        logger.warning("Failed to save metadata (non-fatal)", exc_info=True)
