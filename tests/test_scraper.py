import json

import httpx
import pytest

from errors import StageError
from models import Intent
from scraper import FirecrawlScraper, recommend_engine, target_url_for


@pytest.mark.parametrize(
    "intent, url",
    [
        (Intent(action="search", query="richest person in the world"), "https://www.forbes.com/real-time-billionaires/"),
        (Intent(action="search", query="weather in Paris", site="google.com"), "https://duckduckgo.com/?q=weather%20in%20Paris"),
        (Intent(action="search", query="AI", site="wikipedia.org"), "https://en.wikipedia.org/wiki/Special:Search?search=AI"),
        (Intent(action="search", query="nba scores", site="espn.com"), "https://www.espn.com/search/_/q/nba%20scores"),
        (Intent(action="search", query="python", site="google.com"), "https://www.google.com/search?q=python"),
        (Intent(action="search", query="rust", site="docs.rs"), "https://docs.rs/search?q=rust"),
        (Intent(action="navigate", query="AI", site="wikipedia.org"), "https://wikipedia.org"),
        (Intent(action="search", query="cats & dogs"), "https://duckduckgo.com/?q=cats%20%26%20dogs"),
        (Intent(action="search", query=""), "https://www.google.com"),
    ],
)
def test_target_url(intent, url):
    assert target_url_for(intent) == url


def test_recommend_engine():
    assert recommend_engine(Intent(action="search", query="x")).name == "DuckDuckGo"
    assert recommend_engine(Intent(action="search", query="x", site="search.yahoo.com")).name == "Yahoo"
    assert recommend_engine(Intent(action="search", query="x", site="startpage.com")).name == "Startpage"


def scraper_with(handler):
    client = httpx.Client(base_url="https://api.firecrawl.dev", transport=httpx.MockTransport(handler))
    return FirecrawlScraper("fc-key", client=client)


def test_scrape_returns_markdown():
    seen = {}

    def handler(request):
        seen["auth"] = request.headers["Authorization"]
        seen["body"] = json.loads(request.content)
        return httpx.Response(
            200,
            json={"success": True, "data": {"markdown": "# Weather\nSunny", "metadata": {"title": "Weather"}}},
        )

    result = scraper_with(handler).scrape(Intent(action="search", query="weather"))

    assert seen["auth"] == "Bearer fc-key"
    assert seen["body"]["url"] == "https://duckduckgo.com/?q=weather"
    assert seen["body"]["onlyMainContent"] is True
    assert result.title == "Weather"
    assert result.content == "# Weather\nSunny"


def test_scrape_failure_is_stage_error():
    with pytest.raises(StageError) as info:
        scraper_with(lambda request: httpx.Response(502)).scrape(Intent(action="search", query="x"))
    assert info.value.stage == "scrape"

    with pytest.raises(StageError, match="quota exceeded"):
        scraper_with(lambda request: httpx.Response(200, json={"success": False, "error": "quota exceeded"})).scrape(
            Intent(action="search", query="x")
        )
