"""Data Models Module

Defines Pydantic models for the records flowing through the transition:
the query-result row describing one research output, and the structured
heading nodes extracted from a rendered body.
"""

from typing import Any, Dict, List, Mapping

from pydantic import BaseModel, ConfigDict, Field, field_validator

TRUTHY_STRINGS = {"true", "1", "yes"}


class Solution(BaseModel):
    """One result row of the research-outputs query.

    Every field is optional: absent or null values become empty strings
    (or False for ``peer_reviewed``) so downstream code never has to
    check for presence.
    """
    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    output: str = ""
    title: str = ""
    abstract: str = ""
    date: str = ""
    country_codes: str = Field(default="", alias="countryCodes")
    type: str = ""
    creators: str = ""
    citation: str = ""
    peer_reviewed: bool = Field(default=False, alias="peerReviewed")
    themes: str = ""
    uris: str = ""

    @field_validator(
        "output", "title", "abstract", "date", "country_codes", "type",
        "creators", "citation", "themes", "uris",
        mode="before",
    )
    @classmethod
    def _default_to_empty_string(cls, value: Any) -> str:
        if value is None:
            return ""
        return str(value)

    @field_validator("peer_reviewed", mode="before")
    @classmethod
    def _parse_flag(cls, value: Any) -> bool:
        if isinstance(value, bool):
            return value
        if value is None:
            return False
        return str(value).strip().lower() in TRUTHY_STRINGS

    @classmethod
    def from_binding(cls, binding: Mapping[str, Any]) -> "Solution":
        """Build a Solution from a SPARQL JSON results binding.

        Accepts both the W3C shape (``{"title": {"type": "literal",
        "value": "..."}}``) and an already-flattened mapping of values.
        """
        values: Dict[str, Any] = {}
        for name, term in binding.items():
            if isinstance(term, Mapping):
                values[name] = term.get("value")
            else:
                values[name] = term
        return cls.model_validate(values)


class HeaderNode(BaseModel):
    """A heading in a rendered body, with the headings nested beneath it."""
    text: str
    level: int
    id: str
    headers: List["HeaderNode"] = []
