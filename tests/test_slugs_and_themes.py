import re

import pytest

from src.dfid_transition.slugs import disambiguate, parameterize
from src.dfid_transition.themes import identifiers

SLUG_SHAPE = re.compile(r"[a-z0-9]+(-[a-z0-9]+)*")


# --- parameterize ----------------------------------------------------------------


def test_parameterize_basic_title():
    assert parameterize("My Title") == "my-title"


def test_parameterize_strips_diacritics():
    assert parameterize("  Évaluation des écoles! ") == "evaluation-des-ecoles"


def test_parameterize_collapses_separator_runs():
    assert parameterize("a -- b / c") == "a-b-c"


def test_parameterize_custom_separator():
    assert parameterize("Water & Sanitation", separator="_") == "water_sanitation"


@pytest.mark.parametrize(
    "title",
    [
        "Water & Sanitation",
        "  --Leading and trailing--  ",
        "Ünïcödé títle with ümlauts",
        "Numbers 2015/16: 100% of targets",
        "already-a-slug",
        "中文 mixed English",
    ],
)
def test_parameterize_output_shape(title):
    slug = parameterize(title)
    assert SLUG_SHAPE.fullmatch(slug)


def test_parameterize_empty_and_symbol_only():
    assert parameterize("") == ""
    assert parameterize("!!! ???") == ""


# --- disambiguate ------------------------------------------------------------------


def test_disambiguate_appends_id():
    assert disambiguate("my-title", "123") == "my-title-123"


def test_disambiguate_empty_slug_uses_id():
    assert disambiguate("", "123") == "123"


# --- themes.identifiers ------------------------------------------------------------


def test_identifiers_use_last_path_segment():
    assert identifiers("http://t/x http://t/y") == ["x", "y"]


def test_identifiers_preserve_duplicates_and_order():
    assert identifiers("http://t/b http://t/a http://t/b") == ["b", "a", "b"]


def test_identifiers_parameterize_segments():
    assert identifiers("http://r4d.dfid.gov.uk/rdf/skos/Themes/Water_Supply/") == ["water-supply"]


def test_identifiers_empty_field():
    assert identifiers("") == []
    assert identifiers("   ") == []


def test_identifiers_map_every_uri_to_one_identifier():
    raw = "http://t/%%% http://t/x ???"
    assert identifiers(raw) == ["http-t", "x", "???"]
    assert len(identifiers(raw)) == len(raw.split())
