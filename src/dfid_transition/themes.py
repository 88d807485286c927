"""Map R4D theme taxonomy URIs to finder-friendly identifiers."""

from typing import List

from .slugs import parameterize


def identifiers(raw_theme_field: str) -> List[str]:
    """
    Parameterize each whitespace-separated theme URI.

    The identifier is built from the last path segment of the URI, so
    ``http://r4d.dfid.gov.uk/rdf/skos/Themes/Agriculture`` maps to
    ``agriculture``. Order and duplicates are kept, and every URI yields
    exactly one identifier: when the last segment has no letters or digits
    the whole URI is parameterized instead, and a URI with none at all is
    kept as it is.

    Args:
        raw_theme_field: Space-separated theme URIs from the query result

    Returns:
        List of identifiers, [] for an empty field
    """
    if not raw_theme_field:
        return []

    result: List[str] = []
    for uri in raw_theme_field.split():
        segments = [s for s in uri.rstrip("/").split("/") if s]
        last = segments[-1] if segments else uri
        result.append(parameterize(last) or parameterize(uri) or uri)
    return result
