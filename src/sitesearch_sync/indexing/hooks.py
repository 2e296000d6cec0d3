"""
User Hooks

Extension points users can implement to tune what gets indexed. Each hook
defaults to a no-op, so the indexing core never needs to know whether a user
module is present.

A hook module may define any subset of:

    def should_be_excluded(path): ...
    def before_indexing_each(record, node): ...
    def before_indexing_all(records): ...
"""

from __future__ import annotations

import importlib
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger("sitesearch.hooks")

Record = Dict[str, Any]


def _never_excluded(path: str) -> bool:
    return False


def _keep_record(record: Record, node: Any) -> Optional[Record]:
    return record


def _keep_all(records: List[Record]) -> List[Record]:
    return records


@dataclass(frozen=True)
class Hooks:
    should_be_excluded: Callable[[str], bool] = _never_excluded
    before_indexing_each: Callable[[Record, Any], Optional[Record]] = _keep_record
    before_indexing_all: Callable[[List[Record]], List[Record]] = _keep_all

    def apply_each(self, record: Record, node: Any) -> Optional[Record]:
        """Run the per-record hook. ``None`` means drop the record."""
        return self.before_indexing_each(record, node)

    def apply_all(self, records: List[Record]) -> List[Record]:
        return list(self.before_indexing_all(records))


HOOK_NAMES = ("should_be_excluded", "before_indexing_each", "before_indexing_all")


def load_hooks(module_path: Optional[str]) -> Hooks:
    """
    Build a ``Hooks`` instance from a user module.

    Parameters
    ----------
    module_path : Optional[str]
        Dotted import path of the module. ``None`` returns the defaults.

    Raises
    ------
    ImportError
        If the module cannot be imported.
    """
    if not module_path:
        return Hooks()

    module = importlib.import_module(module_path)
    overrides = {
        name: getattr(module, name)
        for name in HOOK_NAMES
        if callable(getattr(module, name, None))
    }
    logger.debug("Loaded hooks %s from %s", sorted(overrides), module_path)
    return Hooks(**overrides)
