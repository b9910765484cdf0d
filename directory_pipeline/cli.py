# Defines the command-line interface using argparse.

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import IO, Any, Sequence

from directory_pipeline import __version__
from directory_pipeline.audit import load_rules, rules_from_config
from directory_pipeline.cache import CacheConfig, CrawlCache
from directory_pipeline.candidates import CandidateStore
from directory_pipeline.classifier import KeywordConfig
from directory_pipeline.config import load_config, load_regions
from directory_pipeline.crawler import CrawlEngine
from directory_pipeline.fetchers import HttpxFetcher, PlaywrightFetcher
from directory_pipeline.pipeline import reconcile, run_audit_stage, run_build_stage, run_crawl_stage, run_sync
from directory_pipeline.records import RecordBuilder
from directory_pipeline.storage import RecordStore
from directory_pipeline.ui import (
    render_audit_summary,
    render_batch_report,
    render_stage_header,
    render_sync_result,
)

log = logging.getLogger(__name__)

CANDIDATES_FILE = "candidates.json"
PROCESSED_FILE = "processed_domains.json"
REGIONS_FILE = "regions.json"
RECORDS_DIR = "records"
AUDIT_REPORT_FILE = "audit_report.json"
AUDIT_RULES_FILE = "audit_rules.json"


def _configure_logging(verbose: bool) -> None:
    level = logging.INFO if verbose else logging.WARNING
    logging.basicConfig(level=level, format="%(levelname)s: %(message)s")


def _human_bytes(n: int) -> str:
    # Compact human-readable bytes
    units = ["B", "KB", "MB", "GB", "TB"]
    i = 0
    v = float(n)
    while v >= 1024 and i < len(units) - 1:
        v /= 1024.0
        i += 1
    s = f"{v:.2f}".rstrip("0").rstrip(".")
    return f"{s} {units[i]}"


def _init_crawl_cache(config: dict[str, Any], cache_dir: str | None, os_default: bool) -> CrawlCache:
    cfg = CacheConfig.from_config(config)
    if os_default:
        cfg.directory = "os-default"
    if cache_dir:
        cfg.directory = cache_dir
    return CrawlCache(cfg)


def _load_records(data_dir: Path) -> RecordStore:
    return RecordStore(data_dir / RECORDS_DIR).load()


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Candidate-to-record pipeline for a local business directory.",
        prog="directory_pipeline",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose logging output to stderr.",
    )
    parser.add_argument(
        "--data-dir",
        metavar="PATH",
        default=None,
        help="Directory holding candidates, records and reports (default: config data_dir).",
    )
    parser.add_argument(
        "--config",
        metavar="PYPROJECT",
        default=None,
        help="pyproject.toml to read [tool.directory_pipeline] from (default: ./pyproject.toml).",
    )
    parser.add_argument("-q", "--quiet", action="store_true", help="Only print the final tally.")

    subparsers = parser.add_subparsers(dest="command", required=True)

    # --- crawl ---
    crawl_parser = subparsers.add_parser(
        "crawl", help="Crawl and classify pending candidates."
    )
    crawl_parser.add_argument("--limit", type=int, default=None, help="Maximum candidates to crawl.")
    crawl_parser.add_argument(
        "--http",
        action="store_true",
        help="Fetch with plain HTTP instead of a headless browser (no JavaScript).",
    )

    # --- reconcile ---
    subparsers.add_parser(
        "reconcile", help="Recover candidate status from the crawl cache after a crash."
    )

    # --- build ---
    subparsers.add_parser("build", help="Build records from evaluated candidates.")

    # --- audit ---
    audit_parser = subparsers.add_parser("audit", help="Audit all records and write the report.")
    audit_parser.add_argument(
        "--rules",
        metavar="FILEPATH",
        default=None,
        help=f"JSON audit rule table (default: <data-dir>/{AUDIT_RULES_FILE} or config).",
    )
    audit_parser.add_argument("--json", dest="json_output", action="store_true", help="Print the report as JSON.")

    # --- sync ---
    subparsers.add_parser("sync", help="Rebuild the processed-domain set.")

    # --- cache ---
    cache_parser = subparsers.add_parser("cache", help="Manage the on-disk crawl cache.")
    cache_parser.add_argument(
        "--dir",
        dest="cache_dir",
        metavar="PATH",
        default=None,
        help="Cache directory to operate on (defaults to config).",
    )
    cache_parser.add_argument(
        "--os-default",
        dest="cache_os_default",
        action="store_true",
        help="Use the OS-specific default cache directory.",
    )
    cache_sub = cache_parser.add_subparsers(dest="cache_cmd", required=True)
    cache_sub.add_parser("clear", help="Wipe the entire cache.")
    cache_sub.add_parser("stats", help="Show total items and size on disk.")
    cache_inspect = cache_sub.add_parser("inspect", help="Dump the cached crawl for a domain.")
    cache_inspect.add_argument("domain", help="The normalized domain to inspect.")
    return parser


def _handle_cache(args: argparse.Namespace, config: dict[str, Any], stdout: IO[str]) -> int:
    with _init_crawl_cache(config, args.cache_dir, args.cache_os_default) as cache:
        if args.cache_cmd == "clear":
            cache.clear_all()
            print(f"Cache cleared at: {cache.directory or '(disabled)'}", file=stdout)
            return 0

        if args.cache_cmd == "stats":
            st = cache.stats()
            bytes_on_disk = int(st.get("bytes", 0))
            out = {
                "directory": st.get("directory", ""),
                "items": int(st.get("items", 0)),
                "bytes": bytes_on_disk,
                "human_bytes": _human_bytes(bytes_on_disk),
            }
            print(json.dumps(out, indent=2), file=stdout)
            return 0

        # inspect
        data = cache.get_raw(args.domain)
        if data is None:
            print("Cache miss", file=stdout)
            return 2
        print(json.dumps(data, indent=2), file=stdout)
        return 0


async def async_main(argv: Sequence[str] | None = None, stdout: IO[str] | None = None) -> int:
    """Async entry point for the command-line interface."""
    stdout = stdout or sys.stdout

    args = _build_parser().parse_args(argv)
    _configure_logging(args.verbose)

    config = load_config(Path(args.config) if args.config else None)
    if args.command == "cache":
        return _handle_cache(args, config, stdout)

    data_dir = Path(args.data_dir or config["data_dir"])
    candidates_path = data_dir / CANDIDATES_FILE
    verbose_out = not args.quiet

    if args.command == "audit":
        records = _load_records(data_dir)
        rules_path = Path(args.rules) if args.rules else data_dir / AUDIT_RULES_FILE
        rules = load_rules(rules_path) if rules_path.exists() else rules_from_config(config)
        if not args.json_output:
            render_stage_header("audit", len(records), file=stdout)
        batch, summary = run_audit_stage(records, rules, data_dir / AUDIT_REPORT_FILE)
        if args.json_output:
            print(json.dumps(summary, indent=2), file=stdout)
        else:
            render_batch_report(batch, file=stdout, verbose=verbose_out)
            render_audit_summary(summary, file=stdout)
        return 0

    store = CandidateStore.load(candidates_path)

    if args.command == "sync":
        processed = run_sync(_load_records(data_dir), store, data_dir / PROCESSED_FILE)
        render_sync_result(processed, file=stdout)
        return 0

    keyword_config = KeywordConfig.from_config(config)
    with CrawlCache(CacheConfig.from_config(config)) as cache:
        if args.command == "reconcile":
            report = reconcile(store, cache, keyword_config)

        elif args.command == "crawl":
            fetcher_cls = HttpxFetcher if args.http or not config["crawl"].get("use_playwright", True) else PlaywrightFetcher
            async with fetcher_cls.from_config(config) as fetcher:
                engine = CrawlEngine.from_config(config, fetcher, cache=cache)
                render_stage_header("crawl", sum(1 for _ in store.query(status="pending")), file=stdout)
                try:
                    report = await run_crawl_stage(store, engine, keyword_config, limit=args.limit)
                finally:
                    store.save(candidates_path)

        else:  # build
            records = _load_records(data_dir)
            regions_path = data_dir / REGIONS_FILE
            regions = load_regions(regions_path)[0] if regions_path.exists() else {}
            builder = RecordBuilder.from_config(config, regions, existing_slugs=records.slugs())
            report = await run_build_stage(
                store,
                cache,
                builder,
                records,
                reject_irrelevant=bool(config["classifier"].get("reject_irrelevant", True)),
            )

    store.save(candidates_path)
    render_batch_report(report, file=stdout, verbose=verbose_out)
    return 1 if report.errors() and not report.values() else 0


def main(argv: Sequence[str] | None = None) -> int:
    """Synchronous wrapper for the CLI entry point."""
    return asyncio.run(async_main(argv))


if __name__ == "__main__":
    sys.exit(main())
