# main.py
import argparse
import dataclasses
import json
import logging
import sys
from pathlib import Path
from typing import Callable, List, Optional

from config import Settings, load_settings
from errors import AgentError
from models import TurnResult
from outcome import STATUS_PARTIAL, STATUS_SUCCESS
from pipeline import Pipeline


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="web-agent",
        description="Turn a typed or spoken request into browser automation on a remote browser.",
    )
    source = parser.add_mutually_exclusive_group(required=True)
    source.add_argument("--text", help="Request to run, e.g. 'search for weather in Paris'")
    source.add_argument("--audio", type=Path, help="Audio recording of the request")
    parser.add_argument(
        "--keep-session",
        action="store_true",
        help="Keep the remote browser alive after the turn (prints its session id)",
    )
    parser.add_argument("--session-id", help="Reuse a kept-alive browser session")
    parser.add_argument("--timeout", type=float, default=None, help="Turn timeout in seconds (0 disables)")
    parser.add_argument("--show-browser", action="store_true", help="Slow, highlighted actions for live viewing")
    parser.add_argument("--env-file", default=None, help="Path to a .env file")
    return parser


def print_result(result: TurnResult) -> None:
    if result.plan is not None:
        print("\n--- 🗺️  PLAN ---\n")
        print(json.dumps([step.to_dict() for step in result.plan.steps], indent=2))
        if result.plan.expected_outcome:
            print(f"\n🎯 Expected outcome: {result.plan.expected_outcome}")

    if result.execution_logs:
        print("\n--- 🤖 STEPS ---\n")
        for idx, log in enumerate(result.execution_logs, start=1):
            marker = "✅" if log.ok else "❌"
            print(f"{marker} {idx}. {log.step.action}: {log.step.description or ''}")
            if log.result:
                print(f"     {log.result[:300]}")
            if log.error:
                print(f"     error: {log.error}")

    if result.live_view_url:
        print(f"\n🌐 Live view: {result.live_view_url}")
    if result.answer is not None:
        print(f"\n💬 Answer ({result.answer.confidence} confidence):\n{result.answer.answer}")
        if result.answer.suggestion:
            print(f"💡 {result.answer.suggestion}")
    if result.session_id:
        print(f"\n🔖 Session: {result.session_id}")
    print(f"\n{result.chat_reply}\n")


def main(
    argv: Optional[List[str]] = None,
    pipeline_factory: Callable[[Settings], Pipeline] = Pipeline.from_settings,
) -> int:
    args = build_parser().parse_args(argv)
    try:
        settings = load_settings(args.env_file)
    except AgentError as exc:
        print(f"❌ {exc}")
        return 1
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    if args.show_browser:
        settings = dataclasses.replace(
            settings, executor=dataclasses.replace(settings.executor, show_browser=True)
        )

    audio = None
    if args.audio is not None:
        try:
            audio = args.audio.read_bytes()
        except OSError as exc:
            print(f"❌ Could not read audio file: {exc}")
            return 1

    try:
        pipeline = pipeline_factory(settings)
    except AgentError as exc:
        print(f"❌ {exc}")
        return 1

    print(f"\n🧠 Processing: '{args.text or args.audio}' ...\n")
    result = pipeline.run_turn(
        text=args.text,
        audio=audio,
        close_session=not args.keep_session,
        session_id=args.session_id,
        timeout_s=args.timeout,
    )
    print_result(result)
    return 0 if result.status in (STATUS_SUCCESS, STATUS_PARTIAL) else 1


if __name__ == "__main__":
    sys.exit(main())
