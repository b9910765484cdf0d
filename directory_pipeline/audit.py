# directory_pipeline/audit.py
"""
Audit Engine: a fixed rule table evaluated against every record.

Rules are data. Each one names a record field, a check kind, an optional
threshold value, a severity and a message. Issues are recomputed from
scratch on every run so re-auditing an unchanged record is a no-op.
"""
from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Iterable, Mapping, Optional

from directory_pipeline.config import DEFAULT_AUDIT_RULES
from directory_pipeline.models import REVIEW_SEVERITIES, Issue, Record, Severity, utc_now
from directory_pipeline.storage import read_json

log = logging.getLogger(__name__)


def _present(value: Any, _threshold: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, str):
        return bool(value.strip())
    if isinstance(value, (list, dict, tuple)):
        return len(value) > 0
    return True


def _min_length(value: Any, threshold: Any) -> bool:
    return isinstance(value, str) and len(value.strip()) >= int(threshold)


def _min_count(value: Any, threshold: Any) -> bool:
    return value is not None and len(value) >= int(threshold)


def _not_equal(value: Any, threshold: Any) -> bool:
    return value != threshold


CHECKS: dict[str, Callable[[Any, Any], bool]] = {
    "present": _present,
    "min_length": _min_length,
    "min_count": _min_count,
    "not_equal": _not_equal,
}


@dataclass(frozen=True)
class AuditRule:
    field: str
    check: str
    severity: Severity
    message: str
    value: Any = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "AuditRule":
        check = data["check"]
        if check not in CHECKS:
            raise ValueError(f"Unknown audit check {check!r} for field {data.get('field')!r}")
        severity = data.get("severity", "warning")
        if severity not in ("critical", "warning", "info"):
            raise ValueError(f"Unknown severity {severity!r}")
        return cls(
            field=data["field"],
            check=check,
            severity=severity,
            message=data.get("message") or f"{data['field']} failed {check}",
            value=data.get("value"),
        )

    def passes(self, record: Record) -> bool:
        return CHECKS[self.check](getattr(record, self.field), self.value)


def rules_from_config(config: Mapping[str, Any]) -> list[AuditRule]:
    raw = config.get("audit", {}).get("rules") or DEFAULT_AUDIT_RULES
    return [AuditRule.from_dict(r) for r in raw]


def load_rules(path: Path) -> list[AuditRule]:
    """Rules from a JSON file: either a list of rules or {"rules": [...]}."""
    data = read_json(path, default=None)
    if data is None:
        log.info("No audit rule file at %s; using defaults.", path)
        data = DEFAULT_AUDIT_RULES
    if isinstance(data, Mapping):
        data = data.get("rules", [])
    return [AuditRule.from_dict(r) for r in data]


def audit(record: Record, rules: Iterable[AuditRule], now: Optional[str] = None) -> Record:
    """Replace the record's issues with a fresh evaluation. Never raises."""
    issues: list[Issue] = []
    for rule in rules:
        try:
            ok = rule.passes(record)
        except Exception as e:  # a bad rule must not stop the audit
            log.warning("Audit rule %s/%s failed on %s: %s", rule.field, rule.check, record.slug, e)
            issues.append(
                Issue(severity="info", field=rule.field, message=f"Rule {rule.check} on {rule.field} could not be evaluated")
            )
            continue
        if not ok:
            issues.append(Issue(severity=rule.severity, field=rule.field, message=rule.message))

    record.review_issues = issues
    record.needs_review = any(i.severity in REVIEW_SEVERITIES for i in issues)
    record.last_audit_at = now or utc_now()
    return record


def audit_all(records: Iterable[Record], rules: Iterable[AuditRule]) -> list[Record]:
    rules = list(rules)
    now = utc_now()
    return [audit(r, rules, now) for r in records]


def build_report(records: Iterable[Record]) -> dict[str, Any]:
    """Aggregate counts over already-audited records, in one pass."""
    total = 0
    needs_review = 0
    by_severity: Counter[str] = Counter()
    by_message: Counter[str] = Counter()
    by_region: Counter[str] = Counter()

    for record in records:
        total += 1
        if record.needs_review:
            needs_review += 1
        by_region[record.region or "unknown"] += 1
        for issue in record.review_issues:
            by_severity[issue.severity] += 1
            by_message[issue.message] += 1

    return {
        "total": total,
        "clean": total - needs_review,
        "needs_review": needs_review,
        "by_severity": {s: by_severity.get(s, 0) for s in ("critical", "warning", "info")},
        "by_message": dict(by_message.most_common()),
        "by_region": dict(sorted(by_region.items())),
        "generated_at": utc_now(),
    }
