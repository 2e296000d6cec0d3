"""
Remote Error Classification

Turns a raw ``RemoteTransportError`` into the most specific error we know
how to explain. Known errors are checked in order; the first match wins and
unknown errors are returned unchanged.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Callable, Dict, List, Optional

from .errors import (
    CredentialError,
    IndexingError,
    InvalidIndexNameError,
    RecordTooBigRemote,
    RemoteTransportError,
    UnknownSettingError,
)
from ..utils import find_by_key

logger = logging.getLogger("sitesearch.error_handler")

_RECORD_TOO_BIG = re.compile(r"^Record .* is too big")
_RECORD_SIZE = re.compile(r"size=(\d+) bytes")
_RECORD_OBJECT_ID = re.compile(r"objectID=(\S+)")
_UNKNOWN_SETTING = re.compile(r"^Invalid object attributes: (.*) near line")
_INVALID_INDEX_NAME = re.compile(r"^indexName is not valid")


def _unknown_application_id(error: RemoteTransportError, context: Dict[str, Any]):
    if not error.details.get("network_error"):
        return None
    host = str(error.details.get("host") or "")
    application_id = host.split(".")[0]
    application_id = re.sub(r"-dsn$", "", application_id)
    return CredentialError(
        f"Cannot reach any host for application {application_id}",
        application_id=application_id,
    )


def _invalid_credentials(error: RemoteTransportError, context: Dict[str, Any]):
    index_name = error.index_name or ""
    if error.status == 403 and index_name.endswith("_tmp"):
        return CredentialError(
            error.remote_message,
            application_id=error.details.get("application_id"),
            index_name=index_name,
        )
    if error.remote_message != "Invalid Application-ID or API key":
        return None
    return CredentialError(
        error.remote_message,
        application_id=error.details.get("application_id") or "",
    )


def _record_too_big(error: RemoteTransportError, context: Dict[str, Any]):
    message = error.remote_message
    if not _RECORD_TOO_BIG.match(message):
        return None

    size_match = _RECORD_SIZE.search(message)
    size = int(size_match.group(1)) if size_match else None

    object_id = error.details.get("objectID")
    if object_id is None:
        id_match = _RECORD_OBJECT_ID.search(message)
        object_id = id_match.group(1) if id_match else None

    record = find_by_key(context.get("records"), "objectID", object_id)

    return RecordTooBigRemote(
        message,
        details={**error.details, "objectID": object_id},
        record=record,
        size=size,
        max_record_size=context.get("max_record_size"),
    )


def _unknown_settings(error: RemoteTransportError, context: Dict[str, Any]):
    match = _UNKNOWN_SETTING.match(error.remote_message)
    if not match:
        return None
    setting_name = match.group(1)
    settings = context.get("settings") or {}
    return UnknownSettingError(
        error.remote_message,
        details=error.details,
        setting_name=setting_name,
        setting_value=settings.get(setting_name),
    )


def _invalid_index_name(error: RemoteTransportError, context: Dict[str, Any]):
    if not _INVALID_INDEX_NAME.match(error.remote_message):
        return None
    return InvalidIndexNameError(error.remote_message, details=error.details)


KNOWN_ERRORS: List[Callable[[RemoteTransportError, Dict[str, Any]], Optional[IndexingError]]] = [
    _unknown_application_id,
    _invalid_credentials,
    _record_too_big,
    _unknown_settings,
    _invalid_index_name,
]


def identify(
    error: RemoteTransportError,
    context: Optional[Dict[str, Any]] = None,
) -> IndexingError:
    """
    Classify a remote error.

    Parameters
    ----------
    error : RemoteTransportError
        The raw error raised by the search client.

    context : Optional[Dict[str, Any]]
        What the caller was doing: ``records`` (the failed batch),
        ``settings`` (settings being pushed), ``max_record_size``.

    Returns
    -------
    IndexingError
        A more specific error, or ``error`` itself when nothing matched.
    """
    context = context or {}
    logger.debug("Raw remote error: %s (%s)", error, error.details)

    for check in KNOWN_ERRORS:
        identified = check(error, context)
        if identified is not None:
            return identified
    return error
