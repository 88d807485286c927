"""
Publishing Configuration

Constants describing how research outputs land on the publishing platform,
plus the environment-driven settings for attachment fetching.

Environment variables:
  DFID_FETCH_MAX_WORKERS: Concurrent attachment fetches (default: 8)
  DFID_FETCH_TIMEOUT_SECONDS: Per-request timeout in seconds (default: 30)
  DFID_SKIP_ATTACHMENT_FETCH: Set to '1' to classify attachments without
    downloading them (hashes stay empty)
"""

import os

# --- Routing ---

BASE_PATH_PREFIX = "/dfid-research-outputs"

# --- Content item fields ---

DOCUMENT_TYPE = "dfid_research_output"
SCHEMA_NAME = "specialist_document"
PUBLISHING_APP = "specialist-publisher"
RENDERING_APP = "specialist-frontend"
LOCALE = "en"
PHASE = "live"
UPDATE_TYPE = "minor"
FIRST_PUBLISHED_NOTE = "First published."

# Organisation the outputs are tagged to (sent via the links endpoint).
# Kept exactly as it appears in the legacy migration config.
ORGANISATION_CONTENT_ID = "b994552-7644-404d-a770-a2fe659c661f"

# --- Legacy catalogue URLs ---

LINKED_DEVELOPMENT_OUTPUT_PATTERN = (
    r"http://linked-development\.org/r4d/output/(?P<id>[0-9]+?)/"
)
R4D_OUTPUT_URL = "http://r4d.dfid.gov.uk/Output/{id}/Default.aspx"

# --- Attachments ---

DOWNLOAD_EXTENSIONS = frozenset({
    "pdf", "doc", "docx", "xls", "xlsx", "ppt", "pptx",
    "rtf", "odt", "ods", "odp", "csv", "txt", "zip",
})

FETCH_MAX_WORKERS = int(os.getenv("DFID_FETCH_MAX_WORKERS", "8"))
FETCH_TIMEOUT_SECONDS = float(os.getenv("DFID_FETCH_TIMEOUT_SECONDS", "30"))
SKIP_ATTACHMENT_FETCH = os.getenv("DFID_SKIP_ATTACHMENT_FETCH", "0") == "1"
