import asyncio
import io
import json

import pytest

from directory_pipeline.candidates import CandidateStore
from directory_pipeline.cli import _human_bytes, async_main
from directory_pipeline.models import Candidate, Classification, Record
from directory_pipeline.storage import RecordStore

PYPROJECT = """
[tool.directory_pipeline]
data_dir = "pipeline_data"

[tool.directory_pipeline.cache]
directory = "crawl_cache"
"""


def _run(*argv) -> tuple[int, str]:
    out = io.StringIO()
    code = asyncio.run(async_main(list(argv), stdout=out))
    return code, out.getvalue()


@pytest.fixture
def project(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    (tmp_path / "pyproject.toml").write_text(PYPROJECT, encoding="utf-8")
    data = tmp_path / "pipeline_data"
    data.mkdir()
    (data / "regions.json").write_text(
        json.dumps({"regions": {"dallas": {"display_name": "Dallas, TX", "state": "TX"}}}),
        encoding="utf-8",
    )
    return data


@pytest.mark.parametrize(
    "n, expected",
    [(0, "0 B"), (1536, "1.5 KB"), (1024 * 1024, "1 MB")],
)
def test_human_bytes(n, expected):
    assert _human_bytes(n) == expected


def test_build_then_sync_from_the_command_line(project):
    store = CandidateStore()
    store.upsert(Candidate(url="https://joesplumbing.com", domain="joesplumbing.com", title="Joe's Plumbing", region="dallas"))
    store.transition("joesplumbing.com", "evaluated", classification=Classification(True, 5, False, 0, "high"))
    store.save(project / "candidates.json")

    code, out = _run("build")
    assert code == 0
    assert "joesplumbing.com" in out
    assert (project / "records" / "joes-plumbing-dallas-tx.json").exists()
    assert CandidateStore.load(project / "candidates.json").get("joesplumbing.com").status == "listed"

    code, out = _run("sync")
    assert code == 0
    processed = json.loads((project / "processed_domains.json").read_text(encoding="utf-8"))
    assert processed["domains"] == ["joesplumbing.com"]
    assert "Processed domains: 1" in out


def test_audit_writes_report_and_prints_json(project):
    RecordStore(project / "records").add(Record(slug="a", domain="a.com", name="A", region="dallas"))

    code, out = _run("audit", "--json")
    assert code == 0
    assert json.loads(out)["needs_review"] == 1
    assert (project / "audit_report.json").exists()

    code, out = _run("audit")
    assert "--- Audit Report ---" in out
    assert "Missing city" in out


def test_cache_stats_and_inspect(project, tmp_path):
    code, out = _run("cache", "--dir", str(tmp_path / "other_cache"), "stats")
    assert code == 0
    assert json.loads(out)["items"] == 0

    code, out = _run("cache", "inspect", "missing.com")
    assert code == 2
    assert "Cache miss" in out
