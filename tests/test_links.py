import pytest

from lead_finder.core import links


@pytest.mark.parametrize(
    "url",
    [
        "https://www.instagram.com/cafe_tokyo/",
        "https://instagram.com/cafe_tokyo",
        "http://instagr.am/p/abc",
        "https://WWW.Instagram.COM/cafe",
    ],
)
def test_profile_network_links(url):
    result = links.classify_link(url)
    assert result.is_social is True
    assert result.is_profile_network is True


@pytest.mark.parametrize(
    "url",
    [
        "https://www.facebook.com/cafe",
        "https://x.com/cafe",
        "https://lit.link/cafe",
        "https://linktr.ee/cafe",
        "https://page.line.me/abc",
    ],
)
def test_other_social_links(url):
    result = links.classify_link(url)
    assert result.is_social is True
    assert result.is_profile_network is False


@pytest.mark.parametrize(
    "url",
    [
        "https://cafe-tokyo.jp/",
        "https://notinstagram.com/",
        "https://instagram.com.evil.example/",
        "https://box.com/",
    ],
)
def test_homepage_candidates(url):
    result = links.classify_link(url)
    assert result.is_social is False
    assert result.is_profile_network is False


def test_canonical_url_lowercases_host_and_drops_fragment():
    result = links.classify_link("HTTPS://Cafe-Tokyo.JP/Menu?x=1#top")
    assert result.canonical_url == "https://cafe-tokyo.jp/Menu?x=1"


@pytest.mark.parametrize("raw", ["http://[::1", "not a url", "", None])
def test_unparseable_links_never_raise(raw):
    result = links.classify_link(raw)
    assert result.is_social is False
    assert result.canonical_url == (raw or "").strip()


def test_dedupe_links_keeps_first_occurrence():
    urls = [
        "https://www.instagram.com/cafe/",
        "https://WWW.instagram.com/cafe",
        None,
        "https://cafe.jp/#contact",
        "https://cafe.jp/",
    ]
    assert links.dedupe_links(urls) == ["https://www.instagram.com/cafe/", "https://cafe.jp/#contact"]


def test_first_profile_link():
    urls = ["https://facebook.com/cafe", "https://instagram.com/cafe", "https://instagram.com/other"]
    assert links.first_profile_link(urls) == "https://instagram.com/cafe"
    assert links.first_profile_link(["https://cafe.jp"]) is None
