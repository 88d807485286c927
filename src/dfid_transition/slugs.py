"""URL slug helpers for document base paths."""

import re
import unicodedata

NON_ALPHANUMERIC = re.compile(r"[^a-z0-9]+")


def parameterize(text: str, separator: str = "-") -> str:
    """Turn free text into a lowercase ASCII path segment.

    Diacritics are stripped ("Évaluation" -> "evaluation"), every run of
    other characters becomes a single ``separator``, and separators are
    trimmed from both ends.
    """
    if not text:
        return ""
    decomposed = unicodedata.normalize("NFKD", text)
    ascii_text = decomposed.encode("ascii", "ignore").decode("ascii")
    return NON_ALPHANUMERIC.sub(separator, ascii_text.lower()).strip(separator)


def disambiguate(slug: str, suffix: str) -> str:
    """Append ``-<suffix>`` to a slug.

    Deciding when a slug collides is up to the caller.
    """
    if not slug:
        return suffix
    if not suffix:
        return slug
    return f"{slug}-{suffix}"
