"""
Error Taxonomy

Every failure the indexer can hit is unrecoverable within a run. Each one is
raised as a subclass of ``IndexingError`` carrying enough context to explain
what failed and how to fix it; the entry point reports it once and exits
with a non-zero status.

Design Goals
------------
- One exception class per actionable failure
- Human-readable diagnostics built from structured context
- No retries and no exit decisions inside the library
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Tuple

logger = logging.getLogger("sitesearch.errors")


# ---------------------------------------------------------------------
# Base
# ---------------------------------------------------------------------

class IndexingError(RuntimeError):
    """Base error for every fatal indexing failure."""

    def describe(self) -> str:
        """Return an actionable, multi-line diagnostic."""
        return str(self)


class CredentialError(IndexingError):
    """Raised when remote credentials are missing or rejected."""

    def __init__(
        self,
        message: str,
        missing: Optional[str] = None,
        application_id: Optional[str] = None,
        index_name: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.missing = missing
        self.application_id = application_id
        self.index_name = index_name

    def describe(self) -> str:
        if self.index_name is not None:
            return (
                f"Your API key has no rights on the `{self.index_name}` index.\n"
                "  Atomic indexing writes to a temporary index first; give the\n"
                "  key access to `<index_name>_tmp` (or to `<index_name>*`)."
            )
        if self.application_id is not None and self.missing is None:
            return (
                f"Application ID `{self.application_id}` and API key do not match.\n"
                "  Check both values in your dashboard; the key must be an\n"
                "  admin key or have write access to your index."
            )
        if self.missing == "api_key":
            return (
                "No API key defined.\n"
                "  Set the ALGOLIA_API_KEY environment variable, or write your\n"
                "  admin API key in a file named _algolia_api_key at the root\n"
                "  of your site source."
            )
        if self.missing is not None:
            return (
                f"No {self.missing.replace('_', ' ')} defined.\n"
                f"  Set ALGOLIA_{self.missing.upper()} or add `{self.missing}`\n"
                "  under the `algolia:` section of your _config.yml."
            )
        return str(self)


class NoRecordsFoundError(IndexingError):
    """Raised when extraction yields zero records, a sure misconfiguration."""

    def __init__(self, files_to_exclude: List[str], nodes_to_index: str) -> None:
        super().__init__("No records found to index.")
        self.files_to_exclude = files_to_exclude
        self.nodes_to_index = nodes_to_index

    def describe(self) -> str:
        return (
            "No records were extracted from your site.\n"
            f"  Excluded files:  {', '.join(self.files_to_exclude) or '(none)'}\n"
            f"  Nodes to index:  {self.nodes_to_index}\n"
            "  Check `files_to_exclude` and `nodes_to_index` in your configuration."
        )


# ---------------------------------------------------------------------
# Record size
# ---------------------------------------------------------------------

def largest_fields(record: Dict[str, Any], count: int = 3) -> List[Tuple[str, int]]:
    """
    Return the ``count`` largest fields of a record as ``(name, size)``
    pairs, largest first. Size is the length of the value's string form.
    """
    sizes = [(key, len(str(value))) for key, value in record.items()]
    sizes.sort(key=lambda pair: pair[1], reverse=True)
    return sizes[:count]


def _readable_fields(record: Dict[str, Any]) -> str:
    return ", ".join(
        f"{key} ({size / 1000:.2f} Kb)" for key, size in largest_fields(record)
    )


class RecordSizeError(IndexingError):
    """Base error for records that cannot be made to fit the size quota."""

    reason = "TOO_BIG"

    def __init__(self, record: Dict[str, Any], size: int, max_size: int) -> None:
        super().__init__(
            f"Record {record.get('url', '?')} is {size} bytes, "
            f"limit is {max_size} bytes ({self.reason})."
        )
        self.record = record
        self.size = size
        self.max_size = max_size

    @property
    def largest_fields(self) -> List[Tuple[str, int]]:
        return largest_fields(self.record)

    def describe(self) -> str:
        return (
            f"A record is too big to be indexed ({self.size} bytes, "
            f"limit {self.max_size} bytes).\n"
            f"  Title:   {self.record.get('title', '(none)')}\n"
            f"  URL:     {self.record.get('url', '(none)')}\n"
            f"  Largest: {_readable_fields(self.record)}\n"
            "  Reduce the content of this page, exclude it, or narrow\n"
            "  `nodes_to_index`."
        )


class UnshrinkableRecordError(RecordSizeError):
    """Raised when an oversized record has no excerpt to degrade."""

    reason = "UNSHRINKABLE"


class RecordStillTooBigError(RecordSizeError):
    """Raised when a record still exceeds the quota without its excerpts."""

    reason = "STILL_TOO_BIG"


# ---------------------------------------------------------------------
# Remote
# ---------------------------------------------------------------------

class RemoteTransportError(IndexingError):
    """
    Raised when a call to the remote search service fails.

    ``details`` holds whatever could be parsed from the failed request and
    its response: ``verb``, ``http_error``, ``index_name``, ``api_action``,
    ``message`` (from the JSON body) and query parameters.
    """

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.details: Dict[str, Any] = dict(details or {})

    @property
    def status(self) -> Optional[int]:
        return self.details.get("http_error")

    @property
    def index_name(self) -> Optional[str]:
        return self.details.get("index_name")

    @property
    def remote_message(self) -> str:
        return str(self.details.get("message") or self)

    def describe(self) -> str:
        lines = ["The search service rejected a request."]
        if self.details.get("verb"):
            lines.append(f"  Request: {self.details['verb']} {self.details.get('url', '')}")
        if self.status is not None:
            lines.append(f"  Status:  {self.status}")
        if self.index_name:
            lines.append(f"  Index:   {self.index_name}")
        lines.append(f"  Message: {self.remote_message}")
        return "\n".join(lines)


class RecordTooBigRemote(RemoteTransportError):
    """Raised when the service refuses a record as oversized."""

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        record: Optional[Dict[str, Any]] = None,
        size: Optional[int] = None,
        max_record_size: Optional[int] = None,
    ) -> None:
        super().__init__(message, details)
        self.record = record or {}
        self.size = size
        self.max_record_size = max_record_size

    def describe(self) -> str:
        return (
            "The search service refused a record because it is too big"
            f" ({self.size} bytes).\n"
            f"  objectID: {self.details.get('objectID', self.record.get('objectID'))}\n"
            f"  Title:    {self.record.get('title', '(none)')}\n"
            f"  URL:      {self.record.get('url', '(none)')}\n"
            f"  Largest:  {_readable_fields(self.record) if self.record else '(unknown)'}\n"
            f"  Your `max_record_size` ({self.max_record_size}) is higher than\n"
            "  the limit of your plan; lower it to match."
        )


class UnknownSettingError(RemoteTransportError):
    """Raised when the pushed index settings contain an unknown key."""

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        setting_name: Optional[str] = None,
        setting_value: Any = None,
    ) -> None:
        super().__init__(message, details)
        self.setting_name = setting_name
        self.setting_value = setting_value

    def describe(self) -> str:
        return (
            f"Unknown index setting `{self.setting_name}` "
            f"(value: {self.setting_value!r}).\n"
            "  Remove or rename it in the `settings:` section of your configuration."
        )


class InvalidIndexNameError(RemoteTransportError):
    """Raised when the configured index name is refused by the service."""

    def describe(self) -> str:
        return (
            f"The index name `{self.index_name}` is not valid.\n"
            "  Pick a name without forbidden characters in `index_name`."
        )


# ---------------------------------------------------------------------
# Reporting
# ---------------------------------------------------------------------

def report_fatal(exc: IndexingError) -> int:
    """
    Log a fatal error with its diagnostic and return the exit status.

    Parameters
    ----------
    exc : IndexingError
        The error that stopped the run.

    Returns
    -------
    int
        Always ``1``; the caller decides whether to exit.
    """
    logger.debug("Raw error: %r", exc)
    for line in exc.describe().splitlines():
        logger.error(line)
    return 1
