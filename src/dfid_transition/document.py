"""Document Assembly Module

Builds the publishing payload for one research output from its query-result
row.

A Document moves through these stages, in order:

    CONSTRUCTED -> FIELDS_DERIVED -> ATTACHMENTS_RESOLVED
                -> BODY_RENDERED -> PAYLOAD_ASSEMBLED

Reading ``body`` waits for the attachments, and ``to_json()`` renders the
body first, so a stage can never be skipped. ``attachments`` and
``abstract`` are computed on first access and cached for the lifetime of
the object; they are never invalidated.
"""

import logging
import re
from enum import IntEnum
from functools import cached_property
from typing import Any, Dict, List, Optional
from uuid import uuid4

from . import config, themes
from .attachments import Attachment, AttachmentFetchError, AttachmentResolver
from .models import HeaderNode, Solution
from .slugs import disambiguate, parameterize
from .text import fix_encoding_errors, html_to_markdown, normalize_text, unescape_entities_repeated

logger = logging.getLogger(__name__)

ORIGINAL_ID_PATTERN = re.compile(r"/(?P<id>[0-9]+?)/")
LINKED_DEVELOPMENT_OUTPUT = re.compile(config.LINKED_DEVELOPMENT_OUTPUT_PATTERN)
ATX_HEADING = re.compile(r"^(?P<marks>#{1,6})[ \t]+(?P<text>.+?)(?:[ \t]+#+)?[ \t]*$")
CODE_FENCE = re.compile(r"^[ \t]{0,3}(```|~~~)")
MARKDOWN_ESCAPE = re.compile(r"\\([\\`*_#>+\-.)])")


class Stage(IntEnum):
    CONSTRUCTED = 0
    FIELDS_DERIVED = 1
    ATTACHMENTS_RESOLVED = 2
    BODY_RENDERED = 3
    PAYLOAD_ASSEMBLED = 4


class SlugAlreadyFinalizedError(RuntimeError):
    """finalize_slug() was called more than once on the same document."""


def extract_headers(markdown: str) -> List[HeaderNode]:
    """Build a heading tree from the ATX headings of a markdown body.

    A heading becomes a child of the closest preceding heading with a
    smaller level. Lines inside fenced code blocks are not headings.
    """
    roots: List[HeaderNode] = []
    stack: List[HeaderNode] = []
    in_fence = False
    for line in (markdown or "").splitlines():
        if CODE_FENCE.match(line):
            in_fence = not in_fence
            continue
        match = None if in_fence else ATX_HEADING.match(line)
        if match is None:
            continue
        text = MARKDOWN_ESCAPE.sub(r"\1", match.group("text").strip())
        node = HeaderNode(text=text, level=len(match.group("marks")), id=parameterize(text))
        while stack and stack[-1].level >= node.level:
            stack.pop()
        if stack:
            stack[-1].headers.append(node)
        else:
            roots.append(node)
        stack.append(node)
    return roots


def prune_empty_headers(headers: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Return a copy of a header tree with every empty ``headers`` key removed."""
    pruned = []
    for header in headers:
        node = {key: value for key, value in header.items() if key != "headers"}
        children = prune_empty_headers(header.get("headers") or [])
        if children:
            node["headers"] = children
        pruned.append(node)
    return pruned


class Document:
    """A research output on its way to the publishing platform."""

    def __init__(self, solution: Solution, resolver: Optional[AttachmentResolver] = None):
        self.solution = solution
        self.resolver = resolver or AttachmentResolver()
        self.content_id = str(uuid4())
        self.stage = Stage.CONSTRUCTED
        self._slug: Optional[str] = None
        self._advance(Stage.FIELDS_DERIVED)

    def __repr__(self) -> str:
        return f"<Document {self.original_id or '?'} {self.base_path}>"

    def _advance(self, stage: Stage) -> None:
        if stage > self.stage:
            logger.debug("Document %s: %s -> %s", self.original_id, self.stage.name, stage.name)
            self.stage = stage

    # ---------------------------------------------------------------- identity

    @property
    def original_id(self) -> str:
        match = ORIGINAL_ID_PATTERN.search(self.solution.output)
        return match.group("id") if match else ""

    @property
    def original_url(self) -> str:
        output_url = self.solution.output
        match = LINKED_DEVELOPMENT_OUTPUT.match(output_url)
        if match:
            return config.R4D_OUTPUT_URL.format(id=match.group("id"))
        return output_url

    @property
    def title(self) -> str:
        return normalize_text(self.solution.title)

    @property
    def description(self) -> str:
        return normalize_text(self.solution.citation)

    # ------------------------------------------------------------------ slugs

    def derive_default_slug(self) -> str:
        return parameterize(self.title) or self.original_id

    def finalize_slug(self, disambiguated: bool = False) -> str:
        """Fix the slug for this run.

        Called once by the batch after it has looked for collisions; a
        disambiguated slug gets the original id appended.
        """
        if self._slug is not None:
            raise SlugAlreadyFinalizedError(
                f"Slug for output {self.original_id} already finalized as {self._slug!r}"
            )
        slug = self.derive_default_slug()
        if disambiguated:
            slug = disambiguate(slug, self.original_id)
        self._slug = slug
        return slug

    def disambiguate(self) -> str:
        return self.finalize_slug(disambiguated=True)

    @property
    def slug(self) -> str:
        return self._slug if self._slug is not None else self.derive_default_slug()

    @property
    def base_path(self) -> str:
        return f"{config.BASE_PATH_PREFIX}/{self.slug}"

    # ------------------------------------------------------------------ dates

    @property
    def first_published_at(self) -> str:
        return self.solution.date.strip().split("T", 1)[0]

    @property
    def public_updated_at(self) -> str:
        date = self.solution.date.strip()
        if not date:
            return ""
        date = date.rstrip("Z")
        if "T" not in date:
            date = f"{date}T00:00:00"
        return f"{date}Z"

    # --------------------------------------------------------------- metadata

    @property
    def countries(self) -> List[str]:
        return self.solution.country_codes.split()

    @property
    def creators(self) -> List[str]:
        names = (normalize_text(name) for name in self.solution.creators.split("|"))
        return [name for name in names if name]

    @property
    def dfid_document_type(self) -> str:
        return parameterize(self.solution.type)

    @property
    def dfid_review_status(self) -> str:
        return "peer_reviewed" if self.solution.peer_reviewed else "unreviewed"

    @property
    def dfid_theme(self) -> List[str]:
        return themes.identifiers(self.solution.themes)

    @property
    def metadata(self) -> Dict[str, Any]:
        return {
            "document_type": config.DOCUMENT_TYPE,
            "country": self.countries,
            "first_published_at": self.first_published_at,
            "dfid_document_type": self.dfid_document_type,
            "dfid_review_status": self.dfid_review_status,
            "dfid_theme": self.dfid_theme,
            "dfid_authors": self.creators,
        }

    # ------------------------------------------------------------ attachments

    @cached_property
    def attachments(self) -> List[Attachment]:
        """Attachments for this output, with their fetches already started."""
        attachments = self.resolver.resolve(self.solution.uris)
        self.resolver.normalize(attachments, self.title)
        self.resolver.start(attachments)
        return attachments

    @property
    def downloads(self) -> List[Attachment]:
        return [a for a in self.attachments if a.is_download]

    def resolve_attachments(self) -> List[Attachment]:
        """
        Wait for every download of this document.

        Raises:
            AttachmentFetchError: If any download could not be fetched
        """
        for attachment in self.downloads:
            self.resolver.ready(attachment)
        failures = {a.uri: a.error for a in self.downloads if a.failed}
        if failures:
            raise AttachmentFetchError(self.original_id, failures)
        self._advance(Stage.ATTACHMENTS_RESOLVED)
        return self.attachments

    # ------------------------------------------------------------------- body

    @cached_property
    def abstract(self) -> str:
        unescaped = unescape_entities_repeated(self.solution.abstract)
        return html_to_markdown(fix_encoding_errors(unescaped))

    @property
    def body(self) -> str:
        attachments = self.resolve_attachments()
        blocks = [self.abstract] if self.abstract else []

        inline_attachments = [
            f"[InlineAttachment:{a.filename}]" for a in attachments if a.is_download
        ]
        if inline_attachments:
            blocks.append("\n".join(inline_attachments))

        links = [f"[{a.title}]({a.uri})" for a in attachments if not a.is_download]
        if links:
            blocks.append("\n".join(links))

        self._advance(Stage.BODY_RENDERED)
        return "\n\n".join(blocks)

    def headers_from(self, body: str) -> List[Dict[str, Any]]:
        return prune_empty_headers([node.model_dump() for node in extract_headers(body)])

    @property
    def headers(self) -> List[Dict[str, Any]]:
        return self.headers_from(self.body)

    @property
    def change_history(self) -> List[Dict[str, str]]:
        return [
            {
                "public_timestamp": self.public_updated_at,
                "note": config.FIRST_PUBLISHED_NOTE,
            }
        ]

    @property
    def details(self) -> Dict[str, Any]:
        body = self.body
        details: Dict[str, Any] = {
            "body": body,
            "metadata": self.metadata,
            "change_history": self.change_history,
            "headers": self.headers_from(body),
        }
        if self.downloads:
            details["attachments"] = [a.to_dict() for a in self.downloads]
        return details

    # ---------------------------------------------------------------- payload

    @property
    def organisations(self) -> List[str]:
        return [config.ORGANISATION_CONTENT_ID]

    @property
    def links(self) -> Dict[str, List[str]]:
        return {"organisations": self.organisations}

    def to_json(self) -> Dict[str, Any]:
        """
        Assemble the content item for the publishing API.

        Organisation links are not part of this record; they are sent
        separately, see ``links``.

        Raises:
            AttachmentFetchError: If any download of this document failed
        """
        details = self.details
        payload = {
            "content_id": self.content_id,
            "base_path": self.base_path,
            "title": self.title,
            "description": self.description,
            "document_type": config.DOCUMENT_TYPE,
            "schema_name": config.SCHEMA_NAME,
            "publishing_app": config.PUBLISHING_APP,
            "rendering_app": config.RENDERING_APP,
            "locale": config.LOCALE,
            "phase": config.PHASE,
            "public_updated_at": self.public_updated_at,
            "details": details,
            "routes": [{"path": self.base_path, "type": "exact"}],
            "redirects": [],
            "update_type": config.UPDATE_TYPE,
        }
        self._advance(Stage.PAYLOAD_ASSEMBLED)
        return payload
