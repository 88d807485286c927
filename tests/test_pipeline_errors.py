# tests/test_pipeline_errors.py

import json
from pathlib import Path

import pytest

import src.run_pipeline as run_pipeline


@pytest.fixture(autouse=True)
def _run_in_tmp(tmp_path: Path, monkeypatch):
    """The CLI writes logs/ relative to the working directory."""
    monkeypatch.chdir(tmp_path)


def test_pipeline_missing_input_file_exits_nonzero(tmp_path: Path):
    """
    If the input file does not exist, the CLI should fail with a non-zero
    exit code and not silently succeed.
    """
    missing_input = tmp_path / "does_not_exist.json"
    output_dir = tmp_path / "output"

    exit_code = run_pipeline.main(
        [
            "--input",
            str(missing_input),
            "--output-dir",
            str(output_dir),
        ]
    )

    assert exit_code != 0
    if output_dir.exists():
        assert len(list(output_dir.iterdir())) == 0


def test_pipeline_invalid_json_exits_nonzero(tmp_path: Path):
    input_path = tmp_path / "broken.json"
    input_path.write_text("{not json", encoding="utf-8")

    exit_code = run_pipeline.main(
        ["--input", str(input_path), "--output-dir", str(tmp_path / "output")]
    )

    assert exit_code != 0


def test_pipeline_empty_input_file_succeeds_with_zero_docs(tmp_path: Path):
    """
    When the input has no bindings, the pipeline should:
      - return exit code 0
      - create a payloads file
      - write an empty list.
    """
    input_path = tmp_path / "empty_input.json"
    output_dir = tmp_path / "output"
    input_path.write_text(
        json.dumps({"head": {"vars": []}, "results": {"bindings": []}}),
        encoding="utf-8",
    )

    exit_code = run_pipeline.main(
        [
            "--input",
            str(input_path),
            "--output-dir",
            str(output_dir),
            "--no-history",
        ]
    )

    assert exit_code == 0, "Empty input should be treated as successful."

    payloads_path = output_dir / "payloads.json"
    assert payloads_path.exists()
    data = json.loads(payloads_path.read_text(encoding="utf-8"))
    assert data == []


def test_pipeline_dry_run_writes_no_output(tmp_path: Path):
    input_path = tmp_path / "input.json"
    input_path.write_text(
        json.dumps([{"output": "http://linked-development.org/r4d/output/5/", "title": "Five"}]),
        encoding="utf-8",
    )
    output_dir = tmp_path / "output"

    exit_code = run_pipeline.main(
        ["--input", str(input_path), "--output-dir", str(output_dir), "--dry-run"]
    )

    assert exit_code == 0
    assert not output_dir.exists()


def test_print_query_outputs_sparql_and_exits(capsys):
    exit_code = run_pipeline.main(["--print-query", "document-types"])

    assert exit_code == 0
    out = capsys.readouterr().out
    assert "SELECT DISTINCT ?type ?prefLabel" in out
    assert "http://r4d.dfid.gov.uk/rdf/skos/DocumentTypes" in out


def test_print_query_rejects_unknown_name():
    with pytest.raises(SystemExit) as excinfo:
        run_pipeline.main(["--print-query", "nonsense"])
    assert excinfo.value.code == 2
