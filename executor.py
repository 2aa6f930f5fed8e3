# executor.py
import base64
import logging
import re
from typing import Any, Callable, Dict, List, Optional, Protocol, Sequence, Tuple
from urllib.parse import urlparse

from config import ExecutorSettings, QualitySettings
from content_quality import classify, tag
from errors import StepPreconditionError
from locators import resolve, split_alternatives
from models import ContentQuality, ExecutionLog, ExecutionSummary, Step, StepKind

logger = logging.getLogger(__name__)

DEFAULT_EXECUTOR = ExecutorSettings()
DEFAULT_QUALITY = QualitySettings()

NO_TEXT_FOUND = "No text found with any selector"
FATAL_STEP_ERROR = "Browser context closed - stopping execution"

FATAL_ERROR_MARKERS = (
    "target page, context or browser has been closed",
    "browser has been closed",
    "context has been closed",
    "page has been closed",
    "target closed",
)

BACK_NAVIGATION_URLS = {"javascript:history.back()", "history.back()", "back", "about:back"}

_SCHEME_RE = re.compile(r"^[a-zA-Z][a-zA-Z0-9+.-]*://")


class ElementHandle(Protocol):
    def text_content(self) -> Optional[str]: ...


class BrowserPage(Protocol):
    """The page capabilities the executor relies on.

    Playwright's sync ``Page`` satisfies this structurally; tests and other
    automation backends only have to provide the same methods.
    """

    def goto(self, url: str, **kwargs: Any) -> Any: ...

    def go_back(self, **kwargs: Any) -> Any: ...

    def wait_for_timeout(self, timeout: float) -> None: ...

    def wait_for_selector(self, selector: str, **kwargs: Any) -> Any: ...

    def click(self, selector: str, **kwargs: Any) -> None: ...

    def hover(self, selector: str, **kwargs: Any) -> None: ...

    def fill(self, selector: str, value: str, **kwargs: Any) -> None: ...

    def type(self, selector: str, text: str, **kwargs: Any) -> None: ...

    def query_selector_all(self, selector: str) -> List[ElementHandle]: ...

    def screenshot(self, **kwargs: Any) -> bytes: ...

    def evaluate(self, expression: str, arg: Any = None) -> Any: ...


def is_fatal_error(error: Any) -> bool:
    """True when the error means the page, context or browser is gone."""
    message = str(error).lower()
    return any(marker in message for marker in FATAL_ERROR_MARKERS)


def _sanitize_selector(selector: Optional[str]) -> Optional[str]:
    """Rewrite ``[attr='value']`` as ``[attr="value"]`` so embedded quotes stay valid."""
    if not selector:
        return selector

    def _repl(match):
        attr = match.group(1).strip()
        value = match.group(3)
        value = value.replace('"', '\\"')
        return f'[{attr}="{value}"]'

    return re.sub(r"\[([^\]=]+)=([\'\"])(.*?)\2\]", _repl, selector)


def is_back_navigation(url: str) -> bool:
    lowered = url.strip().lower()
    return "history.back" in lowered or lowered in BACK_NAVIGATION_URLS


def normalize_url(url: str) -> Optional[str]:
    """Return a navigable URL, or None when the value should be skipped.

    Scheme-less hosts get ``https://``; ``javascript:`` URLs, very short values
    and single words without a dot are rejected.
    """
    url = (url or "").strip()
    if url.lower().startswith("javascript:") or len(url) < 4:
        return None
    if any(ch.isspace() for ch in url):
        return None
    if _SCHEME_RE.match(url):
        return url if urlparse(url).netloc else None

    host = url.split("/", 1)[0].split(":", 1)[0]
    if "." not in host and host.lower() != "localhost":
        return None
    return "https://" + url


def _check_preconditions(step: Step) -> None:
    action = step.action
    if action == StepKind.NAVIGATE.value and not (step.url or "").strip():
        raise StepPreconditionError("URL is required for navigate action")
    if action in (StepKind.CLICK.value, StepKind.EXTRACT_TEXT.value) and not (step.selector or "").strip():
        raise StepPreconditionError(f"Selector is required for {action} action")
    if action == StepKind.FILL.value and (not (step.selector or "").strip() or not step.value):
        raise StepPreconditionError("Selector and value are required for fill action")


def _highlight(page: BrowserPage, selector: str, color: str) -> None:
    try:
        page.evaluate(
            """
            ([sel, color]) => {
                const element = document.querySelector(sel);
                if (element) {
                    element.style.border = `3px solid ${color}`;
                    setTimeout(() => { element.style.border = ""; }, 2000);
                }
            }
            """,
            [selector, color],
        )
    except Exception as exc:
        if is_fatal_error(exc):
            raise
        logger.debug("Highlight skipped for %s: %s", selector, exc)


def _try_candidates(
    page: BrowserPage,
    candidates: Sequence[str],
    step_timeout: int,
    settings: ExecutorSettings,
    perform: Callable[[str], None],
) -> Tuple[Optional[int], Dict[str, str]]:
    """Run ``perform`` against each candidate until one succeeds.

    The first candidate waits up to the step timeout (capped); the others get
    the short fallback wait. Returns the index of the winner (or None) and the
    per-locator failure messages. Fatal errors are re-raised at once.
    """
    failures: Dict[str, str] = {}
    for index, selector in enumerate(candidates):
        wait_ms = min(step_timeout, settings.primary_wait_cap_ms) if index == 0 else settings.fallback_wait_ms
        sanitized = _sanitize_selector(selector) or selector
        try:
            page.wait_for_selector(sanitized, timeout=wait_ms)
            perform(sanitized)
            return index, failures
        except Exception as exc:
            if is_fatal_error(exc):
                raise
            failures[selector] = str(exc)
            if index == 0:
                logger.info("Primary selector failed: %s, trying fallbacks...", selector)
            else:
                logger.debug("Fallback selector failed: %s (%s)", selector, exc)
    return None, failures


def _navigate(page: BrowserPage, step: Step, log: ExecutionLog, settings: ExecutorSettings, quality: QualitySettings) -> None:
    timeout = step.timeout or settings.default_timeout_ms
    url = (step.url or "").strip()

    if is_back_navigation(url):
        try:
            page.go_back(wait_until="domcontentloaded", timeout=min(timeout, settings.back_timeout_cap_ms))
            log.result = "Navigated back in browser history"
        except Exception as exc:
            if is_fatal_error(exc):
                raise
            log.result = f"Failed to go back: {exc}"
            log.error = "Could not navigate back"
            logger.warning("⚠️ Failed to go back: %s", exc)
        return

    target = normalize_url(url)
    if target is None:
        log.result = f"Skipped invalid navigation: {url}"
        log.error = "Invalid URL format - skipping step"
        logger.warning("⚠️ Skipping invalid URL: %s", url)
        return

    page.goto(target, wait_until="domcontentloaded", timeout=min(timeout, settings.navigate_timeout_cap_ms))
    # dynamic content keeps loading after DOMContentLoaded
    page.wait_for_timeout(settings.settle_delay_ms)
    log.result = f"Navigated to {target}"


def _click(page: BrowserPage, step: Step, log: ExecutionLog, settings: ExecutorSettings, quality: QualitySettings) -> None:
    timeout = step.timeout or settings.default_timeout_ms
    candidates = resolve(step.selector or "", StepKind.CLICK.value)

    def perform(selector: str) -> None:
        if settings.show_browser:
            page.hover(selector)
            _highlight(page, selector, "red")
            page.wait_for_timeout(1500)
        page.click(selector, timeout=settings.action_timeout_ms)

    winner, _ = _try_candidates(page, candidates, timeout, settings, perform)
    if winner is None:
        log.error = f"Click failed: Could not click element with any selector. Tried: {', '.join(candidates)}"
        return
    selector = candidates[winner]
    log.result = f"Clicked element: {selector}" if winner == 0 else f"Clicked element using fallback selector: {selector}"


def _fill(page: BrowserPage, step: Step, log: ExecutionLog, settings: ExecutorSettings, quality: QualitySettings) -> None:
    timeout = step.timeout or settings.default_timeout_ms
    value = step.value or ""
    candidates = resolve(step.selector or "", StepKind.FILL.value)

    def perform(selector: str) -> None:
        if settings.show_browser:
            _highlight(page, selector, "blue")
            page.click(selector, timeout=settings.action_timeout_ms)
            page.wait_for_timeout(1000)
            page.fill(selector, "", timeout=settings.action_timeout_ms)
            page.wait_for_timeout(500)
            page.type(selector, value, delay=settings.type_delay_ms)
        else:
            page.fill(selector, "", timeout=settings.action_timeout_ms)
            page.fill(selector, value, timeout=settings.action_timeout_ms)

    winner, _ = _try_candidates(page, candidates, timeout, settings, perform)
    if winner is None:
        log.error = f"Fill failed: Could not fill element with any selector. Tried: {', '.join(candidates)}"
        return
    selector = candidates[winner]
    if winner == 0:
        log.result = f"Filled {selector} with: {value}"
    else:
        log.result = f"Filled using fallback selector {selector} with: {value}"


def _collect_text(elements: Sequence[ElementHandle], min_chars: int = 0) -> str:
    lines: List[str] = []
    for element in elements:
        text = (element.text_content() or "").strip()
        if text and len(text) > min_chars:
            lines.append(text)
    return "\n".join(lines)


def _extract_text(page: BrowserPage, step: Step, log: ExecutionLog, settings: ExecutorSettings, quality: QualitySettings) -> None:
    timeout = step.timeout or settings.default_timeout_ms
    caller = set(split_alternatives(step.selector or ""))
    candidates = resolve(step.selector or "", StepKind.EXTRACT_TEXT.value)
    alternatives = [c for c in candidates if c in caller]
    fallbacks = [c for c in candidates if c not in caller]
    wait_ms = min(timeout, settings.extract_wait_cap_ms)

    try:
        extracted = ""
        matched = False
        for selector in alternatives:
            sanitized = _sanitize_selector(selector) or selector
            try:
                page.wait_for_selector(sanitized, timeout=wait_ms)
                elements = page.query_selector_all(sanitized)
            except Exception as exc:
                if is_fatal_error(exc):
                    raise
                logger.debug("Selector %s failed: %s", selector, exc)
                continue
            matched = matched or bool(elements)
            extracted = _collect_text(elements)
            if extracted:
                break

        if extracted:
            log.result = tag(extracted, classify(extracted, quality))
            return

        if matched:
            log.result = NO_TEXT_FOUND
            return

        # one generic fallback, limited to a few non-trivial matches
        for fallback in fallbacks[:1]:
            elements = page.query_selector_all(fallback)[: settings.extract_fallback_limit]
            extracted = _collect_text(elements, min_chars=settings.extract_fallback_min_chars)
            if extracted:
                verdict = classify(extracted, quality)
                note = "good fallback content" if verdict is ContentQuality.HIGH else "fallback extraction"
                log.result = tag(extracted, verdict, note)
                return

        log.result = NO_TEXT_FOUND
    except Exception as exc:
        if is_fatal_error(exc):
            raise
        log.result = f"Text extraction failed: {exc}"


def _screenshot(page: BrowserPage, step: Step, log: ExecutionLog, settings: ExecutorSettings, quality: QualitySettings) -> None:
    try:
        payload = page.screenshot(full_page=False, type="png")
        log.screenshot = base64.b64encode(payload).decode("ascii")
        log.result = "Screenshot captured"
    except Exception as exc:
        if is_fatal_error(exc):
            raise
        log.result = f"Screenshot failed: {exc}"
        log.error = f"Screenshot operation failed: {exc}"


def _wait(page: BrowserPage, step: Step, log: ExecutionLog, settings: ExecutorSettings, quality: QualitySettings) -> None:
    wait_ms = step.timeout or settings.wait_default_ms
    page.wait_for_timeout(wait_ms)
    log.result = f"Waited for {wait_ms}ms"


_HANDLERS = {
    StepKind.NAVIGATE.value: _navigate,
    StepKind.CLICK.value: _click,
    StepKind.FILL.value: _fill,
    StepKind.EXTRACT_TEXT.value: _extract_text,
    StepKind.SCREENSHOT.value: _screenshot,
    StepKind.WAIT.value: _wait,
}


def execute_step(
    page: BrowserPage,
    step: Step,
    settings: ExecutorSettings = DEFAULT_EXECUTOR,
    quality: QualitySettings = DEFAULT_QUALITY,
) -> ExecutionLog:
    """Execute one step and describe what happened.

    Never raises for step-level problems: missing fields, unknown actions and
    action failures end up in ``log.error``. A closed browser is flagged with
    ``log.fatal`` so the caller can stop the plan.
    """
    log = ExecutionLog(step=step)
    logger.info("🔹 Executing: %s -> %s", step.action, step.selector or step.url or step.value or step.description)

    try:
        handler = _HANDLERS.get(step.action)
        if handler is None:
            raise StepPreconditionError(f"Unknown action: {step.action}")
        _check_preconditions(step)
        handler(page, step, log, settings, quality)
    except Exception as exc:
        if is_fatal_error(exc):
            logger.warning(
                "⚠️ Browser context closed during execution. Stopping further steps to prevent cascading failures."
            )
            log.error = FATAL_STEP_ERROR
            log.fatal = True
        else:
            logger.error("❌ Error executing %s: %s", step.action, exc)
            log.error = str(exc)

    if log.error and not log.fatal:
        logger.info("  ⚠️ %s: %s", step.action, log.error)
    return log


def run_plan(
    page: BrowserPage,
    steps: Sequence[Step],
    settings: ExecutorSettings = DEFAULT_EXECUTOR,
    quality: QualitySettings = DEFAULT_QUALITY,
) -> Tuple[List[ExecutionLog], ExecutionSummary]:
    """Execute ``steps`` in order, stopping after the first fatal error."""
    logs: List[ExecutionLog] = []
    for idx, step in enumerate(steps, start=1):
        logger.info("=== STEP %d/%d: %s ===", idx, len(steps), step.description or step.action)
        log = execute_step(page, step, settings, quality)
        logs.append(log)
        if log.fatal:
            break

    summary = ExecutionSummary.from_logs(logs, total_steps=len(steps))
    logger.info(
        "✅ Executed %d/%d steps successfully", summary.successful_steps, summary.total_steps
    )
    return logs, summary
