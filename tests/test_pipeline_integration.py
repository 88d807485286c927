# tests/test_pipeline_integration.py

import hashlib
import json
from pathlib import Path

import pytest

from src.dfid_transition import pipeline as pipeline_mod
from src.dfid_transition.attachments import AttachmentResolver
from src.dfid_transition.document import Document
from src.dfid_transition.models import Solution

FIXTURE = Path(__file__).parent / "fixtures" / "solutions_small.json"


def fake_fetch(uri):
    return f"file at {uri}".encode()


def make_failing_fetch(bad_uri):
    def fetch(uri):
        if uri == bad_uri:
            raise ConnectionError(f"refused: {uri}")
        return b"ok"
    return fetch


def test_pipeline_creates_payloads_for_fixture(tmp_path: Path):
    """
    End-to-end happy path integration test.

    - 4 query rows, one of them a duplicate
    - two outputs share a title and therefore a default slug
    - attachments fetched through a fake fetch
    """
    output_dir = tmp_path / "output"

    total, processed, output_paths = pipeline_mod.run_pipeline(
        input_path=FIXTURE,
        output_dir=output_dir,
        keep_history=False,
        max_workers=4,
        skip_attachment_fetch=False,
        fetch=fake_fetch,
    )

    assert total == 4
    assert processed == 3
    assert output_paths["payloads"] == output_dir / "payloads.json"
    assert "failed" not in output_paths
    assert (output_dir / "run_metadata.json").exists()

    records = json.loads(output_paths["payloads"].read_text(encoding="utf-8"))
    assert len(records) == 3

    by_path = {r["payload"]["base_path"]: r for r in records}
    assert set(by_path) == {
        "/dfid-research-outputs/water-sanitation",
        "/dfid-research-outputs/water-sanitation-102",
        "/dfid-research-outputs/crop-yields-in-malawi",
    }

    first = by_path["/dfid-research-outputs/water-sanitation"]
    payload = first["payload"]
    assert payload["title"] == "Water & Sanitation"
    assert payload["public_updated_at"] == "2015-03-02T00:00:00Z"
    assert payload["details"]["body"] == (
        "## Background\n\nClean water matters.\n\n"
        "[InlineAttachment:report101.pdf]\n\n"
        "[http://example.org/project](http://example.org/project)"
    )
    assert payload["details"]["headers"] == [
        {"text": "Background", "level": 2, "id": "background"}
    ]
    assert payload["details"]["metadata"]["dfid_theme"] == ["water", "health"]
    assert payload["details"]["metadata"]["dfid_review_status"] == "peer_reviewed"
    attachment = payload["details"]["attachments"][0]
    assert attachment["title"] == "Water & Sanitation"
    assert attachment["content_hash"] == hashlib.sha256(
        b"file at http://r4d.dfid.gov.uk/pdf/outputs/water/report101.pdf"
    ).hexdigest()
    assert first["links"]["organisations"]

    second = by_path["/dfid-research-outputs/water-sanitation-102"]["payload"]
    assert [a["title"] for a in second["details"]["attachments"]] == ["annex-a", "annex-b"]

    third = by_path["/dfid-research-outputs/crop-yields-in-malawi"]["payload"]
    assert "attachments" not in third["details"]

    metadata = json.loads((output_dir / "run_metadata.json").read_text(encoding="utf-8"))
    assert metadata["duplicates_removed"] == 1
    assert metadata["slugs_disambiguated"] == 1
    assert metadata["failed"] == 0


def test_pipeline_isolates_attachment_failures(tmp_path: Path):
    """A failing download skips only its own document and is listed for retry."""
    output_dir = tmp_path / "output"
    fetch = make_failing_fetch("http://r4d.dfid.gov.uk/pdf/outputs/water/annex-b.xlsx")

    total, processed, output_paths = pipeline_mod.run_pipeline(
        input_path=FIXTURE,
        output_dir=output_dir,
        keep_history=False,
        skip_attachment_fetch=False,
        fetch=fetch,
    )

    assert total == 4
    assert processed == 2

    failed = json.loads(output_paths["failed"].read_text(encoding="utf-8"))
    assert len(failed) == 1
    assert failed[0]["original_id"] == "102"
    assert failed[0]["retryable"] is True
    assert list(failed[0]["errors"]) == ["http://r4d.dfid.gov.uk/pdf/outputs/water/annex-b.xlsx"]


def test_pipeline_skip_attachment_fetch_leaves_hashes_empty(tmp_path: Path):
    def exploding_fetch(uri):
        raise AssertionError("fetch must not be called")

    _, processed, output_paths = pipeline_mod.run_pipeline(
        input_path=FIXTURE,
        output_dir=tmp_path / "output",
        keep_history=False,
        skip_attachment_fetch=True,
        fetch=exploding_fetch,
    )

    assert processed == 3
    records = json.loads(output_paths["payloads"].read_text(encoding="utf-8"))
    hashes = [
        a["content_hash"]
        for r in records
        for a in r["payload"]["details"].get("attachments", [])
    ]
    assert hashes and all(h is None for h in hashes)


def test_pipeline_dry_run_writes_nothing(tmp_path: Path):
    output_dir = tmp_path / "output"

    total, processed, output_paths = pipeline_mod.run_pipeline(
        input_path=FIXTURE,
        output_dir=output_dir,
        dry_run=True,
        skip_attachment_fetch=False,
        fetch=fake_fetch,
    )

    assert (total, processed) == (4, 3)
    assert output_paths == {}
    assert not output_dir.exists()


def test_pipeline_limit_and_history(tmp_path: Path):
    output_dir = tmp_path / "output"

    total, processed, output_paths = pipeline_mod.run_pipeline(
        input_path=FIXTURE,
        output_dir=output_dir,
        limit=1,
        keep_history=True,
        skip_attachment_fetch=False,
        fetch=fake_fetch,
    )

    assert total == 4
    assert processed == 1
    assert output_paths["payloads"].name.startswith("payloads_")
    assert list(output_dir.glob("run_metadata_*.json"))


# --- batch helpers -----------------------------------------------------------------


def test_finalize_slugs_disambiguates_all_but_first():
    resolver = AttachmentResolver(fetch=fake_fetch)
    docs = [
        Document(Solution(output=f"http://linked-development.org/r4d/output/{i}/", title="Same"), resolver)
        for i in (1, 2, 3)
    ]
    docs.append(Document(Solution(output="http://linked-development.org/r4d/output/4/", title="Other"), resolver))

    assert pipeline_mod.finalize_slugs(docs) == 2
    assert [d.base_path for d in docs] == [
        "/dfid-research-outputs/same",
        "/dfid-research-outputs/same-2",
        "/dfid-research-outputs/same-3",
        "/dfid-research-outputs/other",
    ]


def test_deduplicate_solutions_keeps_first():
    rows = [
        Solution(output="http://o/1/", title="first"),
        Solution(output="http://o/1/", title="second"),
        Solution(output="", title="no uri"),
    ]
    unique, duplicates = pipeline_mod.deduplicate_solutions(rows)

    assert duplicates == 1
    assert [s.title for s in unique] == ["first", "no uri"]


def test_pipeline_missing_input_raises(tmp_path: Path):
    with pytest.raises(FileNotFoundError):
        pipeline_mod.run_pipeline(input_path=tmp_path / "nope.json", output_dir=tmp_path / "out")


def test_finalize_slugs_never_lands_on_another_default_slug():
    resolver = AttachmentResolver(fetch=fake_fetch)
    docs = [
        Document(Solution(output=f"http://linked-development.org/r4d/output/{i}/", title=title), resolver)
        for i, title in ((1, "My title"), (5, "My title"), (9, "My title 5"))
    ]

    assert pipeline_mod.finalize_slugs(docs) == 2
    assert [d.base_path for d in docs] == [
        "/dfid-research-outputs/my-title",
        "/dfid-research-outputs/my-title-5",
        "/dfid-research-outputs/my-title-5-9",
    ]


def test_plan_slugs_follows_chained_collisions():
    resolver = AttachmentResolver(fetch=fake_fetch)
    docs = [
        Document(Solution(output=f"http://linked-development.org/r4d/output/{i}/", title=title), resolver)
        for i, title in ((1, "A"), (2, "A"), (3, "A 2"), (4, "A 2 3"))
    ]

    assert pipeline_mod.plan_slugs(docs) == [False, True, True, True]
    pipeline_mod.finalize_slugs(docs)
    paths = [d.base_path for d in docs]
    assert len(set(paths)) == len(paths)


def test_divert_slug_collisions_without_original_id():
    resolver = AttachmentResolver(fetch=fake_fetch)
    docs = [
        Document(Solution(output="http://example.org/outputs/a", title="Same"), resolver),
        Document(Solution(output="http://example.org/outputs/b", title="Same"), resolver),
    ]
    pipeline_mod.finalize_slugs(docs)

    kept, failures = pipeline_mod.divert_slug_collisions(docs)

    assert kept == docs[:1]
    assert len(failures) == 1
    assert failures[0]["output"] == "http://example.org/outputs/b"
    assert failures[0]["retryable"] is False
    assert list(failures[0]["errors"]) == ["/dfid-research-outputs/same"]


def test_pipeline_never_writes_duplicate_base_paths(tmp_path: Path):
    input_path = tmp_path / "input.json"
    input_path.write_text(
        json.dumps([
            {"output": "http://example.org/outputs/a", "title": "Same"},
            {"output": "http://example.org/outputs/b", "title": "Same"},
            {"output": "http://linked-development.org/r4d/output/1/", "title": "My title"},
            {"output": "http://linked-development.org/r4d/output/5/", "title": "My title"},
            {"output": "http://linked-development.org/r4d/output/9/", "title": "My title 5"},
        ]),
        encoding="utf-8",
    )
    output_dir = tmp_path / "output"

    total, processed, output_paths = pipeline_mod.run_pipeline(
        input_path=input_path,
        output_dir=output_dir,
        keep_history=False,
        skip_attachment_fetch=True,
        fetch=fake_fetch,
    )

    assert (total, processed) == (5, 4)
    records = json.loads(output_paths["payloads"].read_text(encoding="utf-8"))
    paths = [r["payload"]["base_path"] for r in records]
    assert len(set(paths)) == len(paths)

    failed = json.loads(output_paths["failed"].read_text(encoding="utf-8"))
    assert [f["output"] for f in failed] == ["http://example.org/outputs/b"]

    metadata = json.loads((output_dir / "run_metadata.json").read_text(encoding="utf-8"))
    assert metadata["slug_collisions_diverted"] == 1
    assert metadata["failed"] == 1
