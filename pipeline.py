"""One user turn: transcript, intent, scrape, plan, execute, answer.

Stages run strictly in order. Every stage appends a ``StageLog`` and any
collaborator failure ends the turn with a failed ``TurnResult``; nothing is
retried across stages. Each turn owns its browser session and releases it on
every exit path, including the wall-clock timeout.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeoutError
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from config import Settings
from errors import StageError
from executor import run_plan
from models import (
    Answer,
    ChatMessage,
    ExecutionLog,
    ExecutionSummary,
    Intent,
    Plan,
    ScrapeResult,
    StageLog,
    StepKind,
    TurnResult,
)
from outcome import STATUS_FAILED, evaluate, plain_answer, status_reply
from planner import Answerer, IntentParser, StepPlanner
from scraper import Scraper
from session import Session, SessionManager
from speech import Transcriber

logger = logging.getLogger(__name__)

QUESTION_ACTIONS = ("question", "ask")


@dataclass
class _Turn:
    """Mutable state of a single turn, shared with the timeout watchdog."""

    stage_logs: List[StageLog] = field(default_factory=list)
    messages: List[ChatMessage] = field(default_factory=list)
    execution_logs: List[ExecutionLog] = field(default_factory=list)
    summary: Optional[ExecutionSummary] = None
    plan: Optional[Plan] = None
    session: Optional[Session] = None
    live_view_url: Optional[str] = None
    cancelled: threading.Event = field(default_factory=threading.Event)

    def log(self, stage: str, description: str, data=None) -> None:
        logger.info("[%s] %s", stage, description)
        self.stage_logs.append(StageLog(stage=stage, description=description, data=data))

    def say(self, content: str, status: Optional[str] = None) -> None:
        self.messages.append(ChatMessage(role="agent", content=content, status=status))

    def checkpoint(self) -> None:
        if self.cancelled.is_set():
            raise StageError("error", "Turn cancelled after timeout")


class Pipeline:
    def __init__(
        self,
        intent_parser: IntentParser,
        planner: StepPlanner,
        sessions: SessionManager,
        *,
        scraper: Optional[Scraper] = None,
        transcriber: Optional[Transcriber] = None,
        answerer: Optional[Answerer] = None,
        settings: Optional[Settings] = None,
    ):
        self.intent_parser = intent_parser
        self.planner = planner
        self.sessions = sessions
        self.scraper = scraper
        self.transcriber = transcriber
        self.answerer = answerer
        self.settings = settings or Settings()

    @classmethod
    def from_settings(cls, settings: Settings) -> "Pipeline":
        """Wire the OpenAI, Firecrawl and Browserbase adapters from ``settings``."""
        from planner import OpenAIAnswerer, OpenAIIntentParser, OpenAIStepPlanner
        from scraper import FirecrawlScraper
        from session import BrowserbaseProvider
        from speech import OpenAITranscriber

        settings.require_openai()
        settings.require_browserbase()
        key, model = settings.openai_api_key, settings.openai_model
        provider = BrowserbaseProvider(settings.browserbase_api_key, settings.browserbase_project_id)
        return cls(
            intent_parser=OpenAIIntentParser(model=model, api_key=key),
            planner=OpenAIStepPlanner(model=model, api_key=key),
            sessions=SessionManager(provider),
            scraper=FirecrawlScraper(settings.firecrawl_api_key) if settings.firecrawl_api_key else None,
            transcriber=OpenAITranscriber(model=settings.transcribe_model, api_key=key),
            answerer=OpenAIAnswerer(model=model, api_key=key),
            settings=settings,
        )

    # ------------------------------------------------------------
    # entry point
    # ------------------------------------------------------------
    def run_turn(
        self,
        text: Optional[str] = None,
        audio: Optional[bytes] = None,
        *,
        close_session: bool = True,
        session_id: Optional[str] = None,
        timeout_s: Optional[float] = None,
    ) -> TurnResult:
        """Run one turn from typed ``text`` or recorded ``audio``.

        ``close_session=False`` keeps the remote browser alive so a follow-up
        turn can pass its ``session_id``. ``timeout_s`` bounds the whole turn
        (defaults to ``settings.turn_timeout_s``; 0 disables it); on expiry the
        session is force-released and a failed result is returned.
        """
        turn = _Turn()
        limit = self.settings.turn_timeout_s if timeout_s is None else timeout_s
        if not limit or limit <= 0:
            return self._run(turn, text, audio, close_session, session_id)

        worker = ThreadPoolExecutor(max_workers=1, thread_name_prefix="agent-turn")
        future = worker.submit(self._run, turn, text, audio, close_session, session_id)
        try:
            return future.result(timeout=limit)
        except FuturesTimeoutError:
            turn.cancelled.set()
            logger.error("⏱️ Turn exceeded %ss, force-closing the browser session", limit)
            if turn.session is not None:
                self.sessions.force_release(turn.session)
            return self._fail(turn, StageError("error", f"Request timed out after {limit:g} seconds"))
        finally:
            worker.shutdown(wait=False)

    def _run(
        self,
        turn: _Turn,
        text: Optional[str],
        audio: Optional[bytes],
        close_session: bool,
        session_id: Optional[str],
    ) -> TurnResult:
        try:
            transcript = self._transcript(turn, text, audio)
            intent = self._intent(turn, transcript)
            scraped = self._scrape(turn, intent)
            plan = self._plan(turn, intent, scraped)
            logs, summary = self._execute(turn, plan, close_session, session_id)
            return self._finish(turn, intent, scraped, logs, summary)
        except StageError as exc:
            return self._fail(turn, exc)
        except Exception as exc:
            logger.exception("❌ Unexpected error while processing turn")
            return self._fail(turn, exc)

    # ------------------------------------------------------------
    # stages
    # ------------------------------------------------------------
    def _transcript(self, turn: _Turn, text: Optional[str], audio: Optional[bytes]) -> str:
        if text and text.strip():
            turn.messages.append(ChatMessage(role="user", content=text.strip()))
            return text.strip()
        if not audio:
            raise StageError("transcript", "Either text or audio input is required")
        if self.transcriber is None:
            raise StageError("transcript", "Voice input is not configured")

        message = ChatMessage(role="user", content="🎤 Voice message", is_voice=True)
        turn.messages.append(message)
        turn.log("transcript", "🔄 Transcribing audio...")
        transcript = self.transcriber.transcribe(audio)
        message.content = transcript
        turn.log("transcript", f'📝 Transcript: "{transcript}"', transcript)
        return transcript

    def _intent(self, turn: _Turn, transcript: str) -> Intent:
        turn.checkpoint()
        turn.log("intent", "🧠 Parsing intent...")
        intent = self.intent_parser.parse_intent(transcript)
        turn.log(
            "intent",
            f"🎯 Intent: {intent.action} - {intent.query}",
            {"action": intent.action, "query": intent.query, "site": intent.site, "target": intent.target},
        )
        if intent.action in QUESTION_ACTIONS:
            turn.say(f'I understand you\'re asking: "{intent.query}". Let me search for that information.', "informational")
        else:
            turn.say(f'I\'ll help you {intent.action}: "{intent.query}". Starting automation...', "informational")
        return intent

    def _scrape(self, turn: _Turn, intent: Intent) -> Optional[ScrapeResult]:
        turn.checkpoint()
        if self.scraper is None:
            turn.log("scrape", "⏭️ No scraper configured, planning without page context")
            return None
        turn.log("scrape", "🕷️ Scraping web content...")
        scraped = self.scraper.scrape(intent)
        turn.log("scrape", f"🌐 Scraped: {scraped.title}", {"url": scraped.url, "title": scraped.title})
        return scraped

    def _plan(self, turn: _Turn, intent: Intent, scraped: Optional[ScrapeResult]) -> Plan:
        turn.checkpoint()
        turn.log("plan", "⚙️ Refining automation steps...")
        plan = self.planner.plan(intent, scraped)
        turn.plan = plan
        turn.log(
            "plan",
            f"🔧 Generated {len(plan.steps)} automation steps",
            {"steps": [step.to_dict() for step in plan.steps], "expectedOutcome": plan.expected_outcome},
        )
        return plan

    def _execute(
        self, turn: _Turn, plan: Plan, close_session: bool, session_id: Optional[str]
    ) -> Tuple[List[ExecutionLog], ExecutionSummary]:
        turn.checkpoint()
        turn.log("execute", "🤖 Executing browser automation...")
        keep_alive = not close_session
        session = self.sessions.acquire(session_id=session_id, keep_alive=keep_alive)
        turn.session = session
        try:
            turn.checkpoint()
            logs, summary = run_plan(session.page, plan.steps, self.settings.executor, self.settings.quality)
            turn.execution_logs, turn.summary = logs, summary
            turn.live_view_url = self.sessions.live_view(session)
        finally:
            self.sessions.release(session, keep_alive=keep_alive)

        turn.log(
            "execute",
            f"✅ Executed {summary.successful_steps}/{summary.total_steps} steps successfully",
            summary.to_dict(),
        )
        if turn.live_view_url:
            turn.say(f"🌐 Browser session is live! Watch it here: {turn.live_view_url}", "informational")
        return logs, summary

    def _finish(
        self,
        turn: _Turn,
        intent: Intent,
        scraped: Optional[ScrapeResult],
        logs: List[ExecutionLog],
        summary: ExecutionSummary,
    ) -> TurnResult:
        turn.log("answer", "✅ Automation completed - reporting status")
        extracted = [log.result for log in logs if log.step.action == StepKind.EXTRACT_TEXT.value and log.result]
        outcome = evaluate(summary, extracted, scraped.content if scraped else "")
        sources = (scraped.url,) if scraped else ()

        if outcome.short_circuited:
            answer = Answer(
                answer=outcome.message,
                sources=sources,
                confidence=outcome.confidence,
                needs_more_sources=True,
                suggestion=outcome.suggestion,
            )
        else:
            if self.answerer is not None:
                text = self.answerer.answer(intent, outcome.content)
            else:
                text = plain_answer(outcome.content)
            answer = Answer(answer=text, sources=sources, confidence=outcome.confidence)
        turn.log(
            "answer",
            f"💬 Answer ready (confidence: {answer.confidence})",
            {"confidence": answer.confidence, "needsMoreSources": answer.needs_more_sources},
        )

        reply, reply_status = status_reply(summary)
        turn.say(reply, reply_status)
        turn.say(answer.answer, "informational")
        return TurnResult(
            status=outcome.status,
            chat_reply=reply,
            messages=list(turn.messages),
            stage_logs=list(turn.stage_logs),
            execution_logs=list(logs),
            summary=summary,
            live_view_url=turn.live_view_url,
            session_id=turn.session.session_id if turn.session else None,
            answer=answer,
            plan=turn.plan,
        )

    def _fail(self, turn: _Turn, exc: Exception) -> TurnResult:
        message = exc.message if isinstance(exc, StageError) else (str(exc) or exc.__class__.__name__)
        stage = exc.stage if isinstance(exc, StageError) else "error"
        logger.error("❌ Turn failed during %s: %s", stage, message)
        turn.log("error", f"❌ Error: {message}", {"stage": stage})
        reply = f"❌ I encountered an error: {message}. Please try again or rephrase your request."
        turn.say(reply, "error")
        return TurnResult(
            status=STATUS_FAILED,
            chat_reply=reply,
            messages=list(turn.messages),
            stage_logs=list(turn.stage_logs),
            execution_logs=list(turn.execution_logs),
            summary=turn.summary,
            live_view_url=turn.live_view_url,
            session_id=turn.session.session_id if turn.session else None,
            plan=turn.plan,
        )
