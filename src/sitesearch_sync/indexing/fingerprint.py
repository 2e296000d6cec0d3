"""
Content-addressed record identifiers.

A record's ``objectID`` is the MD5 of its canonical JSON form, computed
without the identifier itself and without ``weight.position``. Adding a
paragraph at the top of a page therefore leaves the identifiers of the
untouched paragraphs below unchanged.
"""

from __future__ import annotations

import hashlib
from copy import deepcopy
from typing import Any, Dict

from ..utils import canonical_json

IDENTITY_FIELDS = ("objectID",)


def fingerprint(record: Dict[str, Any]) -> str:
    content = deepcopy(record)
    for field in IDENTITY_FIELDS:
        content.pop(field, None)

    weight = content.get("weight")
    if isinstance(weight, dict):
        weight.pop("position", None)

    return hashlib.md5(canonical_json(content).encode("utf-8")).hexdigest()


def assign_object_id(record: Dict[str, Any]) -> Dict[str, Any]:
    """Return a copy of ``record`` with its ``objectID`` set."""
    return {**record, "objectID": fingerprint(record)}
