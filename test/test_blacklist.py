import json

import pytest

from directory_pipeline.blacklist import BlacklistFilter, _compile, blacklist_from_config, load_blacklist
from directory_pipeline.config import DEFAULT_BLACKLIST, DEFAULT_CONFIG
from directory_pipeline.models import BlacklistRule


def _filter(**kwargs) -> BlacklistFilter:
    return BlacklistFilter(BlacklistRule.from_dict(kwargs))


def test_exact_domain_excluded_with_its_reason_even_without_pattern_match():
    f = _filter(exact_domains=["acmeleads.com"], domain_patterns=["yelp"], reasons={"acmeleads.com": "lead seller"})
    assert f.is_excluded("https://acmeleads.com/plumbers", "acmeleads.com") == (True, "lead seller")


def test_exact_match_short_circuits_patterns():
    f = _filter(
        exact_domains=["yelp.com"],
        domain_patterns=["yelp"],
        reasons={"yelp.com": "review aggregator", "yelp": "pattern reason"},
    )
    assert f.is_excluded("https://www.yelp.com/biz/joes", "www.yelp.com") == (True, "review aggregator")


def test_subdomain_of_exact_domain_is_excluded():
    f = _filter(exact_domains=["facebook.com"], reasons={"facebook.com": "social network"})
    assert f.is_excluded("https://m.facebook.com/joes", "m.facebook.com") == (True, "social network")


@pytest.mark.parametrize(
    "domain, reason",
    [
        ("dallas.gov", "government site"),
        ("utdallas.edu", "educational site"),
    ],
)
def test_domain_patterns_use_reason_map(domain, reason):
    f = BlacklistFilter(BlacklistRule.from_dict(DEFAULT_BLACKLIST))
    assert f.is_excluded(f"https://{domain}/", domain) == (True, reason)


def test_plain_pattern_acts_as_substring_and_has_default_reason():
    f = _filter(domain_patterns=["plumbingdirectory"])
    excluded, reason = f.is_excluded("https://best-plumbingdirectory.net", "best-plumbingdirectory.net")
    assert excluded
    assert "plumbingdirectory" in reason


def test_invalid_regex_pattern_is_matched_literally():
    # an unterminated character set is invalid on every supported Python
    assert _compile("joes[plumbing").search("see joes[plumbing here")
    assert not _compile("joes[plumbing").search("joesp")
    f = _filter(domain_patterns=["joes[plumbing"])
    assert f.is_excluded("https://joesplumbing.com", "joesplumbing.com") == (False, None)


def test_url_patterns_checked_last():
    f = _filter(url_patterns=["*/blog/*"])
    assert f.is_excluded("https://joesplumbing.com/blog/10-tips", "joesplumbing.com") == (
        True,
        "URL matches pattern '*/blog/*'",
    )
    assert f.is_excluded("https://joesplumbing.com/services", "joesplumbing.com") == (False, None)


def test_malformed_domain_is_excluded_not_raised():
    f = _filter()
    assert f.is_excluded("garbage", "") == (True, "malformed")
    assert f.is_excluded("https://x", "no_dot") == (True, "malformed")


def test_clean_business_site_passes_defaults():
    f = BlacklistFilter(blacklist_from_config(DEFAULT_CONFIG))
    assert f.is_excluded("https://joesplumbing.com/", "joesplumbing.com") == (False, None)


def test_load_blacklist_from_file(tmp_path):
    path = tmp_path / "blacklist.json"
    path.write_text(
        json.dumps({"exact_domains": ["Thumbtack.com"], "reasons": {"thumbtack.com": "marketplace"}}),
        encoding="utf-8",
    )
    rule = load_blacklist(path)
    assert rule.exact_domains == frozenset({"thumbtack.com"})
    assert BlacklistFilter(rule).is_excluded("https://thumbtack.com", "thumbtack.com") == (True, "marketplace")


def test_load_blacklist_missing_file_uses_defaults(tmp_path):
    rule = load_blacklist(tmp_path / "nope.json", defaults=DEFAULT_BLACKLIST)
    assert "yelp.com" in rule.exact_domains
    assert load_blacklist(tmp_path / "nope.json") == BlacklistRule()
