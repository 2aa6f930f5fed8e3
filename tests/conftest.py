import threading
from typing import Dict, List, Optional

import pytest

from config import Settings
from errors import ProviderError
from models import Intent, Plan, ScrapeResult, Step
from pipeline import Pipeline
from session import SessionManager

CLOSED = "Target page, context or browser has been closed"


class FakeElement:
    def __init__(self, text: Optional[str]):
        self._text = text

    def text_content(self):
        return self._text


class FakePage:
    """In-memory stand-in for a Playwright page.

    ``elements`` maps a selector to the texts of its matches; selectors not
    listed time out. ``broken`` selectors are visible but reject actions.
    ``fatal_on`` names a method that kills the browser when called.
    """

    def __init__(self, elements: Optional[Dict[str, List[str]]] = None, broken=(), fatal_on=None):
        self.elements = dict(elements or {})
        self.broken = set(broken)
        self.fatal_on = fatal_on
        self.calls: List[tuple] = []
        self.values: Dict[str, str] = {}
        self.url = "about:blank"
        self.history: List[str] = []
        self.closed = False
        self.block: Optional[threading.Event] = None

    def _record(self, name, *args):
        self.calls.append((name,) + args)
        if self.closed:
            raise Exception(CLOSED)
        if self.fatal_on == name:
            self.closed = True
            raise Exception(CLOSED)

    def goto(self, url, **kwargs):
        self._record("goto", url, kwargs.get("timeout"))
        self.history.append(self.url)
        self.url = url

    def go_back(self, **kwargs):
        self._record("go_back", kwargs.get("timeout"))
        if not self.history:
            raise Exception("Cannot go back: no history")
        self.url = self.history.pop()

    def wait_for_timeout(self, timeout):
        self._record("wait_for_timeout", timeout)
        if self.block is not None:
            self.block.wait(5)
            if self.closed:
                raise Exception(CLOSED)

    def wait_for_selector(self, selector, **kwargs):
        self._record("wait_for_selector", selector, kwargs.get("timeout"))
        if selector not in self.elements:
            raise TimeoutError(f"Timeout {kwargs.get('timeout')}ms exceeded waiting for {selector}")

    def click(self, selector, **kwargs):
        self._record("click", selector)
        if selector in self.broken:
            raise Exception(f"Element {selector} is not clickable")

    def hover(self, selector, **kwargs):
        self._record("hover", selector)

    def fill(self, selector, value, **kwargs):
        self._record("fill", selector, value)
        if selector in self.broken:
            raise Exception(f"Element {selector} is not editable")
        self.values[selector] = value

    def type(self, selector, text, **kwargs):
        self._record("type", selector, text, kwargs.get("delay"))
        self.values[selector] = self.values.get(selector, "") + text

    def query_selector_all(self, selector):
        self._record("query_selector_all", selector)
        return [FakeElement(text) for text in self.elements.get(selector, [])]

    def screenshot(self, **kwargs):
        self._record("screenshot", kwargs.get("full_page"))
        return b"\x89PNG-fake"

    def evaluate(self, expression, arg=None):
        self._record("evaluate")


class FakeProvider:
    def __init__(self, debug: Optional[dict] = None):
        self.debug = debug
        self.created: List[str] = []
        self.released: List[str] = []
        self.keep_alive: List[bool] = []

    def create(self, keep_alive: bool = False):
        session_id = f"sess-{len(self.created) + 1}"
        self.created.append(session_id)
        self.keep_alive.append(keep_alive)
        return {"id": session_id, "connectUrl": f"wss://fake/{session_id}"}

    def connect_url(self, session_id):
        return f"wss://fake/{session_id}"

    def debug_info(self, session_id):
        if self.debug is None:
            raise ProviderError("Browserbase session not found", status=404)
        return self.debug

    def release(self, session_id):
        self.released.append(session_id)


class FakeConnection:
    """Connector/disconnector pair handing out a prepared page."""

    def __init__(self, page: FakePage, fail: Optional[Exception] = None):
        self.page = page
        self.fail = fail
        self.connected: List[tuple] = []
        self.disconnected: List[tuple] = []
        self.done = threading.Event()

    def connect(self, connect_url, reuse_existing=False):
        self.connected.append((connect_url, reuse_existing))
        if self.fail is not None:
            raise self.fail
        return "playwright", "browser", "context", self.page

    def disconnect(self, playwright, browser, context=None):
        self.disconnected.append((playwright, browser, context))
        self.done.set()


class StaticIntentParser:
    def __init__(self, intent: Optional[Intent] = None):
        self.intent = intent
        self.seen: List[str] = []

    def parse_intent(self, text):
        self.seen.append(text)
        return self.intent or Intent(action="search", query=text)


class StaticPlanner:
    def __init__(self, plan: Optional[Plan] = None, error: Optional[Exception] = None):
        self._plan = plan
        self.error = error

    def plan(self, intent, scraped):
        if self.error is not None:
            raise self.error
        return self._plan


class StaticScraper:
    def __init__(self, content: str = ""):
        self.content = content

    def scrape(self, intent):
        return ScrapeResult(url="https://duckduckgo.com/?q=test", title="Search", content=self.content)


class RecordingAnswerer:
    def __init__(self, reply: str = "Here is what I found."):
        self.reply = reply
        self.calls: List[tuple] = []

    def answer(self, intent, content):
        self.calls.append((intent, content))
        return self.reply


class FakeTranscriber:
    def __init__(self, text: str = "search for weather"):
        self.text = text

    def transcribe(self, audio):
        return self.text


def make_plan(*steps: Step) -> Plan:
    return Plan(steps=tuple(steps), expected_outcome="test outcome")


@pytest.fixture
def page():
    return FakePage()


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
def make_pipeline(provider):
    def _make(page, plan=None, *, planner=None, scraper=None, answerer=None, transcriber=None, settings=None, fail=None):
        connection = FakeConnection(page, fail=fail)
        sessions = SessionManager(provider, connector=connection.connect, disconnector=connection.disconnect)
        pipeline = Pipeline(
            intent_parser=StaticIntentParser(),
            planner=planner or StaticPlanner(plan),
            sessions=sessions,
            scraper=scraper,
            transcriber=transcriber,
            answerer=answerer,
            settings=settings or Settings(turn_timeout_s=0),
        )
        return pipeline, connection

    return _make
