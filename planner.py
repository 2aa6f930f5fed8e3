# planner.py
import json
import logging
import re
from typing import Any, Dict, List, Optional, Protocol

from openai import OpenAI, OpenAIError

from errors import MalformedOutputError, StageError
from models import Intent, Plan, ScrapeResult
from outcome import ANSWER_SYSTEM_PROMPT, build_answer_prompt
from scraper import SEARCH_ENGINES, recommend_engine

logger = logging.getLogger(__name__)

SCRAPE_PREVIEW_LIMIT = 1500


class IntentParser(Protocol):
    def parse_intent(self, text: str) -> Intent: ...


class StepPlanner(Protocol):
    def plan(self, intent: Intent, scraped: Optional[ScrapeResult]) -> Plan: ...


class Answerer(Protocol):
    def answer(self, intent: Intent, content: str) -> str: ...


# ------------------------------------------------------------
# JSON helpers
# ------------------------------------------------------------
def _extract_first_json_block(text: str) -> str:
    cleaned = re.sub(r"```(?:json)?|```", "", text, flags=re.IGNORECASE).strip()
    m = re.search(r"\{[\s\S]*\}", cleaned)
    return (m.group(0) if m else cleaned).strip()


def extract_valid_json(text: str) -> Optional[str]:
    """Return the first balanced ``{...}`` object in ``text`` (fenced blocks first)."""
    if not text:
        return None
    fenced = re.search(r"```(?:json)?\s*(\{[\s\S]*?\})\s*```", text)
    if fenced:
        return fenced.group(1).strip()

    start = text.find("{")
    if start == -1:
        return None
    depth = 0
    for idx in range(start, len(text)):
        if text[idx] == "{":
            depth += 1
        elif text[idx] == "}":
            depth -= 1
            if depth == 0:
                return text[start : idx + 1]
    return None


def fallback_intent(transcript: str) -> Intent:
    """Keyword guess used when the model's intent is not parseable."""
    lowered = transcript.lower()
    if any(word in lowered for word in ("search", "find", "look")):
        return Intent(action="search", query=transcript)
    if "navigate" in lowered or "go to" in lowered:
        return Intent(action="navigate", query=transcript)
    return Intent(action="search", query=transcript)


def parse_intent_text(raw: str, transcript: str) -> Intent:
    payload = extract_valid_json(raw or "")
    if payload:
        try:
            data = json.loads(payload)
            if isinstance(data, dict):
                return Intent.from_dict(data)
        except json.JSONDecodeError as exc:
            logger.warning("⚠️ Intent JSON parsing failed: %s", exc)
    logger.warning("⚠️ Falling back to keyword intent for: %s", transcript)
    return fallback_intent(transcript)


def parse_plan_text(raw: str) -> Plan:
    try:
        data = json.loads(_extract_first_json_block(raw or ""))
    except json.JSONDecodeError as exc:
        raise MalformedOutputError("plan", "Planner did not return valid JSON") from exc
    if not isinstance(data, dict) or not isinstance(data.get("steps"), list):
        raise MalformedOutputError("plan", "Planner response has no steps list")

    plan = Plan.from_dict(data)
    if not plan.steps:
        raise MalformedOutputError("plan", "Planner returned no automation steps")
    return plan


# ------------------------------------------------------------
# Prompts
# ------------------------------------------------------------
INTENT_PROMPT = """User said: "{transcript}".

IMPORTANT: Respond with ONLY a valid JSON object. Do not include any explanatory text, markdown formatting, or additional content. Just the JSON.

Convert this user request into JSON instructions with this exact structure:
{{
  "action": "search",
  "query": "the main search query or action description",
  "site": "specific website mentioned (if any, e.g., 'google.com', 'wikipedia.org')",
  "target": "specific element or information to target (if applicable)"
}}

Examples:
Input: "Search for weather in New York"
Output: {{"action": "search", "query": "weather New York", "site": null, "target": null}}

Input: "Find latest news on ESPN"
Output: {{"action": "search", "query": "latest news", "site": "espn.com", "target": null}}

Input: "Navigate to Wikipedia and search for AI"
Output: {{"action": "navigate", "query": "AI", "site": "wikipedia.org", "target": null}}

Remember: ONLY return the JSON object, nothing else."""


def _engine_guide() -> str:
    lines = []
    for engine in SEARCH_ENGINES:
        lines.append(f"- {engine.name} ({engine.home_url}):")
        lines.append(f"  * Search input: '{engine.search_box}'")
        lines.append(f"  * Search button: '{engine.search_button}'")
        lines.append(f"  * Results: '{engine.results}'")
        if engine.snippets:
            lines.append(f"  * Result snippets / answer boxes: '{engine.snippets}'")
    return "\n".join(lines)


PLAN_PROMPT = """Based on the user intent, create detailed browser automation steps.

USER INTENT:
{intent_json}

SCRAPED CONTEXT:
{scraped_block}

AUTOMATION STRATEGY:
- For factual queries (weather, definitions, quick facts): extract from search result snippets
- For news/articles/detailed content: CLICK THROUGH to the first relevant result and extract from the actual page
- For search queries use {engine_name} ({engine_url}) as the search engine to avoid CAPTCHAs
- Include back navigation between result attempts: {{"action": "navigate", "url": "javascript:history.back()"}}
- Use .result:nth-child(N) selectors to target specific result positions; try 2-3 sources for content queries
- Comma-separated selectors are tried in order, so list the most specific first
- Use realistic timeouts (5000-8000ms) for elements that may load slowly

AVAILABLE ACTIONS:
- navigate: go to a URL (needs "url")
- click: click an element (needs "selector")
- fill: type text into an input (needs "selector" and "value")
- extractText: get text from elements (needs "selector")
- screenshot: capture the viewport
- wait: wait for "timeout" milliseconds

SEARCH ENGINE SELECTORS:
{engine_guide}

Output ONLY valid JSON with this structure:
{{
  "steps": [
    {{
      "action": "navigate" | "click" | "fill" | "extractText" | "screenshot" | "wait",
      "url": "target URL (for navigate)",
      "selector": "CSS selector (for click, fill, extractText)",
      "value": "text to input (for fill)",
      "timeout": 5000,
      "description": "human readable description of this step"
    }}
  ],
  "expectedOutcome": "description of what these steps should accomplish"
}}"""


def build_plan_prompt(intent: Intent, scraped: Optional[ScrapeResult] = None) -> str:
    engine = recommend_engine(intent)
    scraped_block = "No page content was scraped."
    if scraped is not None:
        preview = scraped.content[:SCRAPE_PREVIEW_LIMIT]
        scraped_block = f"URL: {scraped.url}\nTitle: {scraped.title}\nContent preview:\n{preview}"

    intent_json = json.dumps(
        {"action": intent.action, "query": intent.query, "site": intent.site, "target": intent.target},
        indent=2,
    )
    return PLAN_PROMPT.format(
        intent_json=intent_json,
        scraped_block=scraped_block,
        engine_name=engine.name,
        engine_url=engine.home_url,
        engine_guide=_engine_guide(),
    )


# ------------------------------------------------------------
# OpenAI-backed collaborators
# ------------------------------------------------------------
class _OpenAIStage:
    stage = ""

    def __init__(self, client: Optional[OpenAI] = None, model: str = "gpt-4o-mini", api_key: Optional[str] = None):
        self.client = client or OpenAI(api_key=api_key or None)
        self.model = model

    def _complete(self, messages: List[Dict[str, Any]], **kwargs: Any) -> str:
        try:
            resp = self.client.chat.completions.create(model=self.model, messages=messages, **kwargs)
        except OpenAIError as exc:
            raise StageError(self.stage, f"{self.stage.capitalize()} request failed: {exc}") from exc
        return (resp.choices[0].message.content or "").strip()


class OpenAIIntentParser(_OpenAIStage):
    stage = "intent"

    def parse_intent(self, text: str) -> Intent:
        raw = self._complete(
            [{"role": "user", "content": INTENT_PROMPT.format(transcript=text)}],
            temperature=0,
        )
        logger.debug("Intent model response: %s", raw)
        return parse_intent_text(raw, text)


class OpenAIStepPlanner(_OpenAIStage):
    stage = "plan"

    def plan(self, intent: Intent, scraped: Optional[ScrapeResult] = None) -> Plan:
        raw = self._complete(
            [
                {"role": "system", "content": "You output only JSON automation plans for Playwright."},
                {"role": "user", "content": build_plan_prompt(intent, scraped)},
            ],
            temperature=0.2,
        )
        return parse_plan_text(raw)


class OpenAIAnswerer(_OpenAIStage):
    stage = "answer"

    def answer(self, intent: Intent, content: str) -> str:
        text = self._complete(
            [
                {"role": "system", "content": ANSWER_SYSTEM_PROMPT},
                {"role": "user", "content": build_answer_prompt(intent, content)},
            ],
            max_tokens=500,
            temperature=0.3,
        )
        return text or "I found information but couldn't generate a proper answer."
