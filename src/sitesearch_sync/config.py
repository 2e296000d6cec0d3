"""
Configuration

Single source of truth for every option the indexer reads.

Values are resolved in this order (first match wins):

1. ``ALGOLIA_*`` environment variables
2. the ``algolia:`` section of the site configuration file (``_config.yml``)
3. a local ``.env`` file
4. the defaults declared below
"""

from __future__ import annotations

from copy import deepcopy
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml
from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


INDEXING_MODES = ("diff", "atomic")

DEFAULT_MARKDOWN_EXT = "markdown,mkdown,mkdn,mkd,md"

API_KEY_FILENAME = "_algolia_api_key"

DEFAULT_INDEX_SETTINGS: Dict[str, Any] = {
    "distinct": True,
    "attributeForDistinct": "url",
    "attributesForFaceting": ["tags", "type", "title"],
    "customRanking": [
        "desc(date)",
        "desc(weight.heading)",
        "asc(weight.position)",
    ],
    "highlightPreTag": '<em class="ais-Highlight">',
    "highlightPostTag": "</em>",
    "searchableAttributes": [
        "title",
        "hierarchy.lvl0",
        "hierarchy.lvl1",
        "hierarchy.lvl2",
        "hierarchy.lvl3",
        "hierarchy.lvl4",
        "hierarchy.lvl5",
        "unordered(text)",
        "collection,unordered(tags)",
    ],
}


class Settings(BaseSettings):
    application_id: Optional[str] = None
    api_key: Optional[SecretStr] = None
    index_name: Optional[str] = None

    # Site layout
    source: str = "."
    markdown_ext: str = DEFAULT_MARKDOWN_EXT

    # Extraction
    nodes_to_index: str = "p"
    extensions_to_index: Optional[List[str]] = None
    files_to_exclude: Optional[List[str]] = None
    max_record_size: int = Field(default=10_000, ge=1)
    hooks: Optional[str] = None

    # Reconciliation
    indexing_mode: str = "diff"
    indexing_batch_size: int = Field(default=1000, ge=1)
    indexing_concurrency: int = Field(default=1, ge=1)
    settings: Union[bool, Dict[str, Any]] = Field(default_factory=dict)
    force_settings: bool = False

    dry_run: bool = False
    verbose: bool = False

    model_config = SettingsConfigDict(
        env_prefix="ALGOLIA_",
        env_file=".env",
        extra="ignore",
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        # Environment always beats the site configuration file
        return env_settings, init_settings, dotenv_settings, file_secret_settings

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @field_validator("indexing_mode", mode="before")
    @classmethod
    def _fallback_to_diff(cls, value: Any) -> str:
        if value not in INDEXING_MODES:
            return "diff"
        return value

    @field_validator("extensions_to_index", "files_to_exclude", mode="before")
    @classmethod
    def _split_comma_list(cls, value: Any) -> Any:
        if isinstance(value, str):
            return [part.strip() for part in value.split(",") if part.strip()]
        return value

    # ------------------------------------------------------------------
    # Derived values
    # ------------------------------------------------------------------

    def resolved_api_key(self) -> Optional[str]:
        """
        Return the API key, falling back to ``<source>/_algolia_api_key``.
        """
        if self.api_key is not None and self.api_key.get_secret_value():
            return self.api_key.get_secret_value()

        key_file = Path(self.source) / API_KEY_FILENAME
        if key_file.is_file():
            content = key_file.read_text(encoding="utf-8").strip()
            if content:
                return content
        return None

    @property
    def resolved_extensions(self) -> List[str]:
        if self.extensions_to_index is not None:
            return list(self.extensions_to_index)
        markdown = [ext.strip() for ext in self.markdown_ext.split(",") if ext.strip()]
        return ["html"] + markdown

    @property
    def resolved_files_to_exclude(self) -> List[str]:
        """
        Exclusion globs. The root ``index.*`` pages are skipped by default;
        set ``files_to_exclude: []`` to index them.
        """
        if self.files_to_exclude is not None:
            return list(self.files_to_exclude)
        return [f"index.{ext}" for ext in self.resolved_extensions]

    @property
    def manages_settings(self) -> bool:
        return self.settings is not False

    @property
    def index_settings(self) -> Dict[str, Any]:
        """
        Default index settings overridden by the user ones.

        Empty when settings management is disabled with ``settings: false``.
        """
        if not self.manages_settings:
            return {}
        merged = deepcopy(DEFAULT_INDEX_SETTINGS)
        if isinstance(self.settings, dict):
            merged.update(deepcopy(self.settings))
        return merged


def load_settings(
    config_path: Optional[Union[str, Path]] = None,
    **overrides: Any,
) -> Settings:
    """
    Build a ``Settings`` object from a site configuration file.

    Parameters
    ----------
    config_path : Optional[str | Path]
        Path to a YAML site configuration. Its ``algolia:`` section provides
        the indexer options; top-level ``source`` and ``markdown_ext`` are
        honored as well.

    overrides : Any
        Values that win over every other source (command-line flags).
    """
    values: Dict[str, Any] = {}

    if config_path is not None:
        path = Path(config_path)
        with path.open("r", encoding="utf-8") as f:
            site_config = yaml.safe_load(f) or {}

        for key in ("source", "markdown_ext"):
            if key in site_config:
                values[key] = site_config[key]
        values.setdefault("source", str(path.parent))
        values.update(site_config.get("algolia") or {})

    config = Settings(**values)

    explicit = {key: value for key, value in overrides.items() if value is not None}
    if explicit:
        config = config.model_copy(update=explicit)
    return config
