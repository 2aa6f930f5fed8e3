import threading

from config import Settings
from conftest import FakePage, FakeTranscriber, RecordingAnswerer, StaticPlanner, StaticScraper, make_plan
from errors import MalformedOutputError, StageError
from models import Step
from outcome import REPHRASE_MESSAGE

ARTICLE = "According to officials, " + "the new bridge opened to traffic this morning after years of work. " * 10

SEARCH_PLAN = make_plan(
    Step(action="navigate", url="https://duckduckgo.com"),
    Step(action="fill", selector="input[name='q']", value="bridge news"),
    Step(action="click", selector="#search_button_homepage"),
    Step(action="extractText", selector="article"),
)


def search_page():
    return FakePage(elements={'input[name="q"]': [], "#search_button_homepage": [], "article": [ARTICLE]})


def test_successful_turn_releases_session_once(make_pipeline, provider):
    answerer = RecordingAnswerer("The bridge opened this morning.")
    pipeline, connection = make_pipeline(search_page(), SEARCH_PLAN, scraper=StaticScraper("scraped page"), answerer=answerer)

    result = pipeline.run_turn(text="find bridge news")

    assert result.status == "success"
    assert result.chat_reply == "✅ Automation successful! Executed 4/4 steps successfully."
    assert result.answer.answer == "The bridge opened this morning."
    assert result.answer.sources == ("https://duckduckgo.com/?q=test",)
    assert provider.released == ["sess-1"]
    assert len(connection.disconnected) == 1
    assert result.session_id == "sess-1"
    assert result.live_view_url == "https://www.browserbase.com/sessions/sess-1"
    stages = [log.stage for log in result.stage_logs]
    assert stages == ["intent", "intent", "scrape", "scrape", "plan", "plan", "execute", "execute", "answer", "answer"]
    assert answerer.calls[0][1].startswith("scraped page\n\nAccording to officials")


def test_messages_follow_the_turn(make_pipeline):
    pipeline, _ = make_pipeline(search_page(), SEARCH_PLAN)
    result = pipeline.run_turn(text="find bridge news")

    assert result.messages[0].role == "user"
    assert result.messages[0].content == "find bridge news"
    assert result.messages[1].content == "I'll help you search: \"find bridge news\". Starting automation..."
    assert result.messages[-2].status == "action_confirmed"
    assert result.messages[-1].content.startswith("Based on the information I found:")


def test_partial_turn_still_releases(make_pipeline, provider):
    page = FakePage(elements={"article": [ARTICLE]})
    plan = make_plan(Step(action="click", selector="#missing"), Step(action="extractText", selector="article"))
    pipeline, _ = make_pipeline(page, plan)

    result = pipeline.run_turn(text="read the article")

    assert result.status == "partial"
    assert result.chat_reply == "⚠️ Automation partially successful: 1/2 steps completed."
    assert provider.released == ["sess-1"]


def test_noise_only_turn_short_circuits_answer(make_pipeline):
    page = FakePage(elements={".promo": ["Accept cookies to continue"]})
    answerer = RecordingAnswerer()
    pipeline, _ = make_pipeline(page, make_plan(Step(action="extractText", selector=".promo")), answerer=answerer)

    result = pipeline.run_turn(text="what is new")

    assert result.answer.answer == REPHRASE_MESSAGE
    assert result.answer.needs_more_sources
    assert result.answer.confidence == "low"
    assert answerer.calls == []


def test_fatal_session_loss_ends_plan_and_releases(make_pipeline, provider):
    page = FakePage(elements={"#go": []}, fatal_on="click")
    plan = make_plan(Step(action="click", selector="#go"), Step(action="wait", timeout=10))
    pipeline, _ = make_pipeline(page, plan)

    result = pipeline.run_turn(text="click go")

    assert len(result.execution_logs) == 1
    assert result.status == "failed"
    assert provider.released == ["sess-1"]


def test_planner_failure_fails_turn_without_session(make_pipeline, provider):
    planner = StaticPlanner(error=MalformedOutputError("plan", "Planner did not return valid JSON"))
    pipeline, _ = make_pipeline(FakePage(), planner=planner)

    result = pipeline.run_turn(text="search cats")

    assert result.status == "failed"
    assert result.chat_reply == (
        "❌ I encountered an error: Planner did not return valid JSON. Please try again or rephrase your request."
    )
    assert result.stage_logs[-1].stage == "error"
    assert provider.created == []
    assert provider.released == []


def test_connect_failure_releases_created_session(make_pipeline, provider):
    pipeline, _ = make_pipeline(FakePage(), SEARCH_PLAN, fail=RuntimeError("ws handshake failed"))

    result = pipeline.run_turn(text="search cats")

    assert result.status == "failed"
    assert "Failed to connect to browser session" in result.chat_reply
    assert provider.released == ["sess-1"]


def test_answer_failure_after_execution_releases_once(make_pipeline, provider):
    class BrokenAnswerer:
        def answer(self, intent, content):
            raise StageError("answer", "Answer request failed: rate limited")

    pipeline, _ = make_pipeline(search_page(), SEARCH_PLAN, answerer=BrokenAnswerer())

    result = pipeline.run_turn(text="find bridge news")

    assert result.status == "failed"
    assert len(result.execution_logs) == 4
    assert provider.released == ["sess-1"]


def test_keep_alive_skips_release_and_follow_up_reuses_session(make_pipeline, provider):
    pipeline, connection = make_pipeline(search_page(), SEARCH_PLAN)

    first = pipeline.run_turn(text="find bridge news", close_session=False)
    assert provider.released == []
    assert provider.keep_alive == [True]
    assert connection.disconnected == [("playwright", None, None)]

    second = pipeline.run_turn(text="find bridge news", session_id=first.session_id)
    assert provider.created == ["sess-1"]
    assert connection.connected[-1] == ("wss://fake/sess-1", True)
    assert second.session_id == "sess-1"
    assert provider.released == ["sess-1"]


def test_timeout_force_releases_exactly_once(make_pipeline, provider):
    page = FakePage()
    page.block = threading.Event()
    pipeline, connection = make_pipeline(page, make_plan(Step(action="wait", timeout=60000), Step(action="wait")))

    result = pipeline.run_turn(text="wait forever", timeout_s=0.5)

    assert result.status == "failed"
    assert "timed out after 0.5 seconds" in result.chat_reply
    assert provider.released == ["sess-1"]

    page.closed = True
    page.block.set()
    assert connection.done.wait(5)
    assert provider.released == ["sess-1"]
    assert len(connection.disconnected) == 1


def test_settings_timeout_is_used_by_default(make_pipeline, provider):
    page = FakePage()
    page.block = threading.Event()
    plan = make_plan(Step(action="wait", timeout=60000))
    pipeline, connection = make_pipeline(page, plan, settings=Settings(turn_timeout_s=0.5))

    result = pipeline.run_turn(text="wait forever")

    assert result.status == "failed"
    page.block.set()
    assert connection.done.wait(5)
    assert provider.released == ["sess-1"]


def test_voice_turn_uses_transcript(make_pipeline):
    pipeline, _ = make_pipeline(search_page(), SEARCH_PLAN, transcriber=FakeTranscriber("find bridge news"))

    result = pipeline.run_turn(audio=b"RIFF....")

    assert result.messages[0].is_voice
    assert result.messages[0].content == "find bridge news"
    assert pipeline.intent_parser.seen == ["find bridge news"]
    assert result.stage_logs[1].description == '📝 Transcript: "find bridge news"'


def test_missing_input_fails(make_pipeline):
    pipeline, _ = make_pipeline(FakePage(), SEARCH_PLAN)
    result = pipeline.run_turn(text="   ")
    assert result.status == "failed"
    assert "Either text or audio input is required" in result.chat_reply
