from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


def _now_iso() -> str:
    return datetime.now(UTC).isoformat()


class StepKind(str, Enum):
    NAVIGATE = "navigate"
    CLICK = "click"
    FILL = "fill"
    EXTRACT_TEXT = "extractText"
    SCREENSHOT = "screenshot"
    WAIT = "wait"


class ContentQuality(str, Enum):
    HIGH = "HIGH"
    LOW = "LOW"


# a single planned browser action; `action` stays a plain string so that
# unknown kinds coming back from the planner can still be logged
@dataclass(frozen=True)
class Step:
    action: str
    description: str = ""
    url: Optional[str] = None
    selector: Optional[str] = None
    value: Optional[str] = None
    timeout: Optional[int] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Step":
        timeout = data.get("timeout")
        try:
            timeout = int(timeout) if timeout is not None else None
        except (TypeError, ValueError):
            timeout = None
        return cls(
            action=str(data.get("action") or ""),
            description=str(data.get("description") or ""),
            url=data.get("url") or None,
            selector=data.get("selector") or None,
            value=data.get("value") if data.get("value") is not None else None,
            timeout=timeout,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {k: v for k, v in asdict(self).items() if v is not None}


@dataclass(frozen=True)
class Plan:
    steps: Tuple[Step, ...]
    expected_outcome: str = ""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Plan":
        raw_steps = data.get("steps") or []
        steps = tuple(Step.from_dict(item) for item in raw_steps if isinstance(item, dict))
        return cls(steps=steps, expected_outcome=str(data.get("expectedOutcome") or ""))


@dataclass
class ExecutionLog:
    step: Step
    timestamp: str = field(default_factory=_now_iso)
    result: Optional[str] = None
    error: Optional[str] = None
    screenshot: Optional[str] = None
    # set when the browser went away mid-step; never serialized
    fatal: bool = False

    @property
    def ok(self) -> bool:
        return not self.error

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"step": self.step.to_dict(), "timestamp": self.timestamp}
        for key in ("result", "error", "screenshot"):
            value = getattr(self, key)
            if value is not None:
                payload[key] = value
        return payload


@dataclass(frozen=True)
class ExecutionSummary:
    total_steps: int
    successful_steps: int
    errors: int

    @classmethod
    def from_logs(cls, logs: List[ExecutionLog], total_steps: Optional[int] = None) -> "ExecutionSummary":
        successful = sum(1 for log in logs if log.ok)
        return cls(
            total_steps=len(logs) if total_steps is None else total_steps,
            successful_steps=successful,
            errors=len(logs) - successful,
        )

    def to_dict(self) -> Dict[str, int]:
        return {
            "totalSteps": self.total_steps,
            "successfulSteps": self.successful_steps,
            "errors": self.errors,
        }


@dataclass(frozen=True)
class Intent:
    action: str
    query: str
    site: Optional[str] = None
    target: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Intent":
        return cls(
            action=str(data.get("action") or "search"),
            query=str(data.get("query") or ""),
            site=data.get("site") or None,
            target=data.get("target") or None,
        )


@dataclass(frozen=True)
class ScrapeResult:
    url: str
    title: str
    content: str
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class StageLog:
    stage: str
    description: str
    data: Any = None
    timestamp: str = field(default_factory=_now_iso)


@dataclass
class ChatMessage:
    role: str
    content: str
    status: Optional[str] = None
    is_voice: bool = False
    timestamp: str = field(default_factory=_now_iso)


@dataclass(frozen=True)
class Answer:
    answer: str
    sources: Tuple[str, ...]
    confidence: str
    needs_more_sources: bool = False
    suggestion: Optional[str] = None


@dataclass
class TurnResult:
    status: str
    chat_reply: str
    messages: List[ChatMessage] = field(default_factory=list)
    stage_logs: List[StageLog] = field(default_factory=list)
    execution_logs: List[ExecutionLog] = field(default_factory=list)
    summary: Optional[ExecutionSummary] = None
    live_view_url: Optional[str] = None
    session_id: Optional[str] = None
    answer: Optional[Answer] = None
    plan: Optional[Plan] = None
