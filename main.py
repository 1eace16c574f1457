#!/usr/bin/env python3
"""
PodcastAI v1.0.0 — Main entry point.
Command line front end for episode transcription, summaries and
transcript Q&A.
"""

import sys
import os
import json
import shutil
import logging
import argparse
import traceback
from datetime import datetime

from podcast_ai.core.constants import APP_NAME, APP_VERSION, LOG_DIR, SubmitOutcome

# ── Logging setup (writes to <app data dir>/logs/ and stderr) ─────────
LOG_DIR.mkdir(parents=True, exist_ok=True)
LOG_FILE = LOG_DIR / "app.log"

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    handlers=[
        logging.FileHandler(LOG_FILE, encoding="utf-8"),
        logging.StreamHandler(sys.stderr),
    ],
)
logger = logging.getLogger("podcast-ai")


def check_prerequisites():
    """Check that ffmpeg and ffprobe are available."""
    missing = [tool for tool in ("ffmpeg", "ffprobe") if not shutil.which(tool)]
    if missing:
        logger.error("Missing tools: %s. PATH = %s", ", ".join(missing),
                     os.environ.get("PATH", ""))
        print(f"Missing required tools: {', '.join(missing)}", file=sys.stderr)
        sys.exit(1)

    for tool in ("ffmpeg", "ffprobe"):
        logger.info("%s found at: %s", tool, shutil.which(tool))


def _print_json(data):
    print(json.dumps(data, indent=2, default=str))


def _log_event(event: str, payload: dict):
    logger.info("[%s] %s %s", payload.get('kind'), event, payload.get('episodeId', ''))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="podcast-ai", description=f"{APP_NAME} {APP_VERSION}")
    sub = parser.add_subparsers(dest="command", required=True)

    diag = sub.add_parser("diagnostics", help="Show tool versions and provider connectivity")
    diag.add_argument("--verify-key", action="store_true", help="Check the OpenAI key online")

    add = sub.add_parser("add-episode", help="Register a podcast episode")
    add.add_argument("--library-id", required=True)
    add.add_argument("--item-id", required=True, help="Podcast (library item) id")
    add.add_argument("--podcast-title", default="")
    add.add_argument("--title", default="")
    add.add_argument("--episode-id")
    add.add_argument("audio_file")

    for name, help_text in (("transcribe", "Transcribe an episode"),
                            ("summarize", "Generate an episode summary"),
                            ("vectorize", "Index an episode transcript for Q&A")):
        cmd = sub.add_parser(name, help=help_text)
        cmd.add_argument("--item-id", required=True)
        cmd.add_argument("episode_id")

    show = sub.add_parser("summary", help="Show an episode summary")
    show.add_argument("episode_id")

    ask = sub.add_parser("ask", help="Ask a question about transcribed episodes")
    ask.add_argument("--library-id", action="append", required=True, dest="library_ids")
    ask.add_argument("question")

    sub.add_parser("serve", help="Run the stall reaper until interrupted")
    return parser


def run(args, service) -> int:
    if args.command == "diagnostics":
        _print_json(service.diagnostics(verify_key=args.verify_key))

    elif args.command == "add-episode":
        service.db.upsert_library_item(args.item_id, args.library_id, args.podcast_title)
        episode = service.db.create_episode(args.item_id, args.title,
                                            os.path.abspath(args.audio_file),
                                            episode_id=args.episode_id)
        print(episode.id)

    elif args.command == "transcribe":
        check_prerequisites()
        outcome = service.transcribe_episode(args.item_id, args.episode_id)
        print(outcome)
        if outcome == SubmitOutcome.REJECTED:
            return 1
        service.transcription_queue.wait_until_idle()
        service.summary_queue.wait_until_idle()
        _print_json(service.get_transcription_status(args.item_id))

    elif args.command == "summarize":
        outcome = service.start_summary_generation(args.item_id, args.episode_id)
        print(outcome)
        if outcome == SubmitOutcome.REJECTED:
            return 1
        service.summary_queue.wait_until_idle()
        _print_json(service.get_summary(args.episode_id))

    elif args.command == "vectorize":
        return 0 if service.vectorize_episode(args.item_id, args.episode_id) else 1

    elif args.command == "summary":
        summary = service.get_summary(args.episode_id)
        if summary is None:
            print("No summary found", file=sys.stderr)
            return 1
        _print_json(summary)

    elif args.command == "ask":
        _print_json(service.ask_question(args.question, args.library_ids).to_dict())

    elif args.command == "serve":
        logger.info("Serving; press Ctrl+C to stop")
        try:
            service.reaper.wait()
        except KeyboardInterrupt:
            logger.info("Interrupted")

    return 0


def main(argv=None):
    logger.info("=" * 60)
    logger.info("%s v%s starting at %s", APP_NAME, APP_VERSION, datetime.now().isoformat())
    logger.info("Python: %s", sys.executable)
    logger.info("=" * 60)

    args = build_parser().parse_args(argv)

    from podcast_ai.service import PodcastAIService
    service = PodcastAIService(on_event=_log_event)
    try:
        service.start()
        return run(args, service)
    except Exception as e:
        logger.critical("Fatal error: %s: %s\n%s", type(e).__name__, e, traceback.format_exc())
        print(f"Error: {e}", file=sys.stderr)
        return 1
    finally:
        service.shutdown()


if __name__ == "__main__":
    sys.exit(main())
