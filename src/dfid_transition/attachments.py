"""Attachment Resolution Module

Turns the ``uris`` field of a research output into attachments, and fetches
and hashes the downloadable ones in the background.

Key features:
  - Classifies URIs into file downloads and plain inline links
  - Derives display titles for downloads
  - Launches one fetch task per download without blocking the caller
  - Records fetch failures on the attachment instead of raising them

Each Attachment is written only by its own fetch task and is read-only once
``ready()`` has returned, so no locking is needed.
"""

import hashlib
import logging
import re
from concurrent.futures import Executor, Future
from typing import Callable, Dict, List, Optional
from urllib.parse import unquote, urlparse
from uuid import uuid4

import requests

from .config import DOWNLOAD_EXTENSIONS, FETCH_TIMEOUT_SECONDS, SKIP_ATTACHMENT_FETCH

logger = logging.getLogger(__name__)

URI_SEPARATORS = re.compile(r"[\s|]+")

Fetch = Callable[[str], bytes]


class AttachmentFetchError(Exception):
    """One or more downloads of a document could not be fetched.

    The rest of the batch is unaffected; the document can be retried.
    """
    retryable = True

    def __init__(self, original_id: str, failures: Dict[str, str]):
        self.original_id = original_id
        self.failures = failures
        super().__init__(
            f"{len(failures)} attachment(s) failed for output {original_id or '?'}: "
            + "; ".join(f"{uri} ({error})" for uri, error in failures.items())
        )


def fetch_bytes(uri: str, timeout: float = FETCH_TIMEOUT_SECONDS) -> bytes:
    """Download ``uri`` and return the response body.

    Raises:
        requests.RequestException: On connection errors, timeouts and
            non-2xx responses
    """
    response = requests.get(uri, timeout=timeout)
    response.raise_for_status()
    return response.content


def _last_path_segment(uri: str) -> str:
    path = urlparse(uri).path
    segments = [s for s in path.split("/") if s]
    return unquote(segments[-1]) if segments else ""


def is_download_uri(uri: str) -> bool:
    """True if the URI path ends in a known document file extension."""
    segment = _last_path_segment(uri)
    if "." not in segment:
        return False
    return segment.rsplit(".", 1)[1].lower() in DOWNLOAD_EXTENSIONS


class Attachment:
    """A file or link referenced by a research output."""

    def __init__(self, uri: str, is_download: bool):
        self.uri = uri
        self.is_download = is_download
        self.content_id = str(uuid4())
        self.title = uri
        self.content: Optional[bytes] = None
        self.content_hash: Optional[str] = None
        self.error: Optional[str] = None
        self._future: Optional[Future] = None

    def __repr__(self) -> str:
        kind = "download" if self.is_download else "link"
        return f"<Attachment {kind} {self.uri!r}>"

    @property
    def filename(self) -> str:
        return _last_path_segment(self.uri) or self.uri

    @property
    def base_name(self) -> str:
        """Filename without its extension."""
        name = self.filename
        return name.rsplit(".", 1)[0] if "." in name else name

    @property
    def started(self) -> bool:
        return self._future is not None

    @property
    def failed(self) -> bool:
        return self.error is not None

    def ready(self, timeout: Optional[float] = None) -> "Attachment":
        """Block until this attachment's fetch has finished.

        Returns immediately for inline links and for downloads that were
        never started. A failed fetch is left on ``error``, not raised.
        """
        if self._future is not None:
            self._future.result(timeout=timeout)
        return self

    def _fetch(self, fetch: Fetch) -> None:
        try:
            content = fetch(self.uri)
        except Exception as exc:
            self.error = f"{type(exc).__name__}: {exc}"
            logger.warning("Attachment fetch failed for %s: %s", self.uri, exc)
            return

        self.content = content
        self.content_hash = hashlib.sha256(content).hexdigest()
        logger.debug(
            "Fetched %s (%d bytes, sha256=%s)", self.uri, len(content), self.content_hash
        )

    def to_dict(self) -> Dict[str, Optional[str]]:
        return {
            "content_id": self.content_id,
            "uri": self.uri,
            "title": self.title,
            "filename": self.filename,
            "content_hash": self.content_hash,
        }


class AttachmentResolver:
    """
    Classify, title and fetch the attachments of research outputs.

    Args:
        executor: Pool the fetch tasks are submitted to. Without one,
            fetches run inline when ``start`` is called.
        fetch: Callable returning the bytes behind a URI
        skip_fetch: Classify and title attachments but never download them
    """

    def __init__(
        self,
        executor: Optional[Executor] = None,
        fetch: Fetch = fetch_bytes,
        skip_fetch: bool = SKIP_ATTACHMENT_FETCH,
    ):
        self.executor = executor
        self.fetch = fetch
        self.skip_fetch = skip_fetch

    def resolve(self, uris_field: str) -> List[Attachment]:
        """Split a URI list into attachments, keeping source order."""
        if not uris_field:
            return []
        return [
            Attachment(uri, is_download_uri(uri))
            for uri in URI_SEPARATORS.split(uris_field.strip())
            if uri
        ]

    def normalize(self, attachments: List[Attachment], base_title: str) -> List[Attachment]:
        """
        Assign display titles.

        A single download takes the document title. With several downloads
        each is named after its file (decoded, extension removed).
        """
        downloads = [a for a in attachments if a.is_download]
        if len(downloads) == 1 and base_title:
            downloads[0].title = base_title
        else:
            for attachment in downloads:
                attachment.title = attachment.base_name
        return attachments

    def start(self, attachments: List[Attachment]) -> None:
        """Launch a fetch for every download that has not been started yet."""
        if self.skip_fetch:
            return
        for attachment in attachments:
            if not attachment.is_download or attachment.started:
                continue
            if self.executor is not None:
                attachment._future = self.executor.submit(attachment._fetch, self.fetch)
            else:
                future: Future = Future()
                attachment._future = future
                attachment._fetch(self.fetch)
                future.set_result(None)

    def ready(self, attachment: Attachment, timeout: Optional[float] = None) -> Attachment:
        return attachment.ready(timeout=timeout)
