import pathlib

from directory_pipeline.cache import CacheConfig, CrawlCache
from directory_pipeline.config import DEFAULT_CONFIG
from directory_pipeline.models import Contacts, CrawledSite, Page, PageError


def _site(domain="joesplumbing.com") -> CrawledSite:
    return CrawledSite(
        domain=domain,
        url=f"https://{domain}",
        crawled_at="2024-01-01T00:00:00+00:00",
        pages=[Page(url=f"https://{domain}", title="Joe's", body_text="Plumbing", headings=["Drains"])],
        contacts=Contacts(phones=["(214) 555-0142"], address_parts={"city": "Dallas"}),
        business_name="Joe's Plumbing",
        page_errors=[PageError(url=f"https://{domain}/contact", error="HTTP error 500")],
    )


def test_put_get_roundtrip_survives_reopen(tmp_path):
    cfg = CacheConfig(enabled=True, directory=str(tmp_path / "crawl_cache"))
    with CrawlCache(cfg) as cache:
        cache.put(_site())
        assert "joesplumbing.com" in cache

    with CrawlCache(cfg) as reopened:
        got = reopened.get("joesplumbing.com")
        assert got == _site()
        assert list(reopened.domains()) == ["joesplumbing.com"]
        assert reopened.get("missing.com") is None


def test_stats_clear_and_delete(tmp_path):
    cache = CrawlCache(CacheConfig(directory=str(tmp_path / "c")))
    cache.put(_site("a.com"))
    cache.put(_site("b.com"))
    st = cache.stats()
    assert st["items"] == 2
    assert st["bytes"] > 0
    assert st["directory"].endswith("c")

    assert cache.delete("a.com") is True
    assert cache.delete("a.com") is False
    cache.clear_all()
    assert cache.stats()["items"] == 0
    cache.close()


def test_disabled_cache_is_a_noop():
    cache = CrawlCache(CacheConfig(enabled=False))
    cache.put(_site())
    assert not cache.enabled
    assert cache.get("joesplumbing.com") is None
    assert "joesplumbing.com" not in cache
    assert cache.stats() == {"items": 0, "bytes": 0, "directory": ""}
    assert list(cache.domains()) == []


def test_cache_config_from_config():
    cfg = CacheConfig.from_config(DEFAULT_CONFIG)
    assert cfg.enabled
    assert cfg.expire_seconds is None
    cfg = CacheConfig.from_config({"cache": {"enabled": False, "directory": "os-default", "expire_seconds": 60}})
    assert (cfg.enabled, cfg.directory, cfg.expire_seconds) == (False, "os-default", 60)


def test_os_default_directory_uses_platformdirs(tmp_path, monkeypatch):
    from directory_pipeline import cache as cache_mod

    target_dir = tmp_path / "os_default_here"

    def fake_user_cache_dir(app_name: str, appauthor: bool = False):
        return str(target_dir)

    monkeypatch.setattr(cache_mod, "_user_cache_dir", fake_user_cache_dir, raising=True)

    cache = CrawlCache(CacheConfig(directory="os-default"), app_name="directory_pipeline_test")
    cache.create_cache_object()
    assert pathlib.Path(cache.directory) == target_dir
    cache.close()
