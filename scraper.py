# scraper.py
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Protocol, Tuple
from urllib.parse import quote

import httpx

from errors import StageError
from models import Intent, ScrapeResult

logger = logging.getLogger(__name__)

FIRECRAWL_API = "https://api.firecrawl.dev"


class Scraper(Protocol):
    def scrape(self, intent: Intent) -> ScrapeResult: ...


@dataclass(frozen=True)
class SearchEngine:
    """A search engine that rarely shows CAPTCHAs to automation, plus its selectors."""

    name: str
    home_url: str
    search_url: str
    search_box: str
    search_button: str
    results: str
    snippets: str = ""

    def url_for(self, query: str) -> str:
        return self.search_url.format(query=quote(query, safe=""))


SEARCH_ENGINES: Tuple[SearchEngine, ...] = (
    SearchEngine(
        name="DuckDuckGo",
        home_url="https://duckduckgo.com",
        search_url="https://duckduckgo.com/?q={query}",
        search_box='input[name="q"]',
        search_button='#search_button_homepage, button[type="submit"], .btn--primary',
        results='.result, [data-testid="result"], .web-result',
        snippets=".result__snippet, .result__body, .zci-wrap, .about-info-box",
    ),
    SearchEngine(
        name="Bing",
        home_url="https://www.bing.com",
        search_url="https://www.bing.com/search?q={query}",
        search_box='input[name="q"]',
        search_button="#sb_form_go",
        results=".b_algo, .b_ans",
        snippets=".b_caption p, .b_snippet",
    ),
    SearchEngine(
        name="Yahoo",
        home_url="https://search.yahoo.com",
        search_url="https://search.yahoo.com/search?p={query}",
        search_box='input[name="p"]',
        search_button='button[type="submit"]',
        results=".searchCenterMiddle .dd, .compTitle",
    ),
    SearchEngine(
        name="Startpage",
        home_url="https://www.startpage.com",
        search_url="https://www.startpage.com/sp/search?query={query}",
        search_box='input[name="query"]',
        search_button='button[type="submit"]',
        results=".w-gl",
    ),
)


def recommend_engine(intent: Intent) -> SearchEngine:
    """Engine named by ``intent.site`` when it is one we know, else DuckDuckGo."""
    site = (intent.site or "").lower()
    for engine in SEARCH_ENGINES[1:]:
        if engine.name.lower() in site:
            return engine
    return SEARCH_ENGINES[0]


# queries better answered by a known page than by a search listing
AUTHORITATIVE_SOURCES = (
    (("richest", "world"), "https://www.forbes.com/real-time-billionaires/"),
)

SITE_SEARCH_URLS = (
    ("google", "https://www.google.com/search?q={query}"),
    ("wikipedia", "https://en.wikipedia.org/wiki/Special:Search?search={query}"),
    ("espn", "https://www.espn.com/search/_/q/{query}"),
)


def target_url_for(intent: Intent) -> str:
    query = intent.query or ""
    lowered = query.lower()
    encoded = quote(query, safe="")
    default_engine = SEARCH_ENGINES[0]

    for words, url in AUTHORITATIVE_SOURCES:
        if query and all(word in lowered for word in words):
            return url
    if "weather" in lowered:
        return default_engine.url_for(query)

    if intent.site:
        site = intent.site.strip()
        if intent.action != "search":
            return site if site.startswith(("http://", "https://")) else f"https://{site}"
        for name, template in SITE_SEARCH_URLS:
            if name in site.lower():
                return template.format(query=encoded)
        return f"https://{site}/search?q={encoded}"

    if query:
        return default_engine.url_for(query)
    return "https://www.google.com"


class FirecrawlScraper:
    """Scrapes the page an intent points at through the Firecrawl REST API."""

    def __init__(
        self,
        api_key: str,
        *,
        base_url: str = FIRECRAWL_API,
        client: Optional[httpx.Client] = None,
        timeout: float = 60.0,
    ):
        self.api_key = api_key
        self._client = client or httpx.Client(base_url=base_url, timeout=timeout)

    def _payload(self, url: str) -> Dict[str, Any]:
        return {
            "url": url,
            "formats": ["markdown", "html"],
            "includeTags": ["title", "meta", "h1", "h2", "h3", "h4", "p", "a", "span", "div"],
            "excludeTags": ["script", "style", "nav", "footer", "header", "aside"],
            "onlyMainContent": True,
            "waitFor": 2000,
        }

    def scrape(self, intent: Intent) -> ScrapeResult:
        url = target_url_for(intent)
        logger.info("🕷️ Scraping %s", url)
        try:
            response = self._client.post(
                "/v1/scrape",
                headers={"Authorization": f"Bearer {self.api_key}"},
                json=self._payload(url),
            )
            response.raise_for_status()
            body = response.json()
        except httpx.HTTPError as exc:
            raise StageError("scrape", f"Firecrawl scraping failed: {exc}") from exc
        except ValueError as exc:
            raise StageError("scrape", "Firecrawl returned a non-JSON response") from exc

        if not body.get("success", False):
            raise StageError("scrape", f"Firecrawl scraping failed: {body.get('error') or 'unknown error'}")

        data = body.get("data") or {}
        metadata = data.get("metadata") or {}
        return ScrapeResult(
            url=url,
            title=metadata.get("title") or "No title",
            content=data.get("markdown") or data.get("html") or "",
            metadata=metadata,
        )
