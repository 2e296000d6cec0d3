"""
Command Line Entry Point

Indexes an already rendered site into a remote search index.

    sitesearch-sync _site --config _config.yml

Design Goals
------------
- Deterministic order: settings, hooks, documents, records, reconciliation
- Every fatal failure is reported once, with a diagnostic, and exits 1
- The library never exits the process; only this module does
"""

from __future__ import annotations

import argparse
import asyncio
import datetime as dt
import logging
import sys
from typing import List, Optional

from soupsieve import SelectorSyntaxError

from . import __version__
from .config import Settings, load_settings
from .core.errors import IndexingError, report_fatal
from .documents.loader import load_site
from .indexing.hooks import load_hooks
from .indexing.indexer import Indexer
from .indexing.pipeline import build_records

logger = logging.getLogger("sitesearch.app")


# ---------------------------------------------------------------------
# Arguments
# ---------------------------------------------------------------------

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="sitesearch-sync",
        description="Push the content of a rendered site to a search index.",
    )
    parser.add_argument(
        "site_dir",
        nargs="?",
        default="_site",
        help="Directory of the rendered site (default: _site)",
    )
    parser.add_argument("--config", help="Path to the site configuration file")
    parser.add_argument(
        "--dry-run",
        action="store_true",
        default=None,
        help="Compute everything but never write to the remote index",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        default=None,
        help="Log every decision",
    )
    parser.add_argument(
        "--force-settings",
        action="store_true",
        default=None,
        help="Push index settings even if they look unchanged",
    )
    parser.add_argument("--index-name", help="Override the configured index name")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)-7s %(name)s: %(message)s",
    )
    # Request logs of the HTTP client are noise outside of verbose mode
    logging.getLogger("httpx").setLevel(logging.DEBUG if verbose else logging.WARNING)


# ---------------------------------------------------------------------
# Run
# ---------------------------------------------------------------------

async def index_site(config: Settings, site_dir: str) -> None:
    """
    Load, extract and push a whole site.

    Raises
    ------
    IndexingError
        On any fatal failure.
    """
    start_time = dt.datetime.now(dt.timezone.utc)
    hooks = load_hooks(config.hooks)
    documents = load_site(site_dir)

    logger.info("Extracting records from %d documents", len(documents))
    records = build_records(documents, config, hooks, start_time=start_time)
    logger.info("Extracted %d records", len(records))

    async with Indexer(config) as indexer:
        await indexer.run(records)


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        config = load_settings(
            args.config,
            dry_run=args.dry_run,
            verbose=args.verbose,
            force_settings=args.force_settings,
            index_name=args.index_name,
        )
    except FileNotFoundError as exc:
        configure_logging(bool(args.verbose))
        logger.error("Configuration file not found: %s", exc.filename)
        return 1
    configure_logging(config.verbose)

    try:
        asyncio.run(index_site(config, args.site_dir))
    except IndexingError as exc:
        return report_fatal(exc)
    except FileNotFoundError as exc:
        logger.error("%s", exc)
        return 1
    except ImportError as exc:
        logger.error("Cannot load hooks module `%s`: %s", config.hooks, exc)
        return 1
    except SelectorSyntaxError as exc:
        logger.error("Invalid `nodes_to_index` selector `%s`: %s", config.nodes_to_index, exc)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
