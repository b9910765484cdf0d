# directory_pipeline/ui.py
# Presentation-only utilities for CLI output.
from __future__ import annotations

from typing import IO, Any, Mapping

from directory_pipeline.models import BatchReport, ProcessedDomainSet

_MARKERS = {"success": "OK", "skipped": "SKIP", "error": "ERR"}


def _writeln(text: str = "", *, file: IO[str]) -> None:
    file.write(text + "\n")


def render_stage_header(stage: str, count: int, *, file: IO[str]) -> None:
    _writeln(f"Running {stage} over {count} item(s)...", file=file)


def render_batch_report(report: BatchReport, *, file: IO[str], verbose: bool = True) -> None:
    if verbose and report.outcomes:
        _writeln(f"\n--- {report.stage.capitalize()} Outcomes ---", file=file)
        for o in report.outcomes:
            marker = _MARKERS.get(o.status, o.status.upper())
            line = f"- [{marker:<4}] {o.key}"
            if o.reason:
                line += f"  ({o.reason})"
            _writeln(line, file=file)
    t = report.tally()
    _writeln(
        f"\n{report.stage}: {t['success']} succeeded, {t['skipped']} skipped, "
        f"{t['error']} failed ({t['total']} total)",
        file=file,
    )


def render_audit_summary(summary: Mapping[str, Any], *, file: IO[str]) -> None:
    _writeln("\n--- Audit Report ---", file=file)
    _writeln(
        f"Records: {summary['total']}  clean: {summary['clean']}  needs review: {summary['needs_review']}",
        file=file,
    )
    sev = summary.get("by_severity", {})
    _writeln(
        f"Issues: {sev.get('critical', 0)} critical, {sev.get('warning', 0)} warning, {sev.get('info', 0)} info",
        file=file,
    )
    by_message = summary.get("by_message", {})
    if by_message:
        _writeln("\nMost common issues:", file=file)
        for message, count in list(by_message.items())[:10]:
            _writeln(f"  {count:>5}  {message}", file=file)
    by_region = summary.get("by_region", {})
    if by_region:
        _writeln("\nBy region:", file=file)
        for region, count in by_region.items():
            _writeln(f"  {count:>5}  {region}", file=file)


def render_sync_result(processed: ProcessedDomainSet, *, file: IO[str]) -> None:
    _writeln(f"Processed domains: {len(processed)} (synced {processed.synced_at})", file=file)
