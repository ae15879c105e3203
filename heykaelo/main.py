"""CLI entry point for the HeyKaelo assistant.

A terminal stand-in for WhatsApp: every line is sent through the same
dispatcher the webhook uses, as if from ``--phone``.  For production, use
the FastAPI server (heykaelo/server.py).

Usage:
    python -m heykaelo.main                       # chat as 27000000000
    python -m heykaelo.main --phone 27821234567   # chat as another number
    python -m heykaelo.main --reset 27821234567   # wipe a stored session
    python -m heykaelo.main --list-states         # show recent sessions
"""

from __future__ import annotations

import argparse
import json
import logging

from dotenv import load_dotenv

from heykaelo.bootstrap import AppContext, build_context
from heykaelo.flows.session import session_mode

logger = logging.getLogger(__name__)

DEFAULT_PHONE = "27000000000"


def _configure_logging(debug: bool = False) -> None:
    """Set up logging: WARNING by default, DEBUG when --debug is passed."""
    root_level = logging.DEBUG if debug else logging.WARNING
    logging.basicConfig(
        level=root_level,
        format="%(asctime)s %(levelname)-8s %(name)s — %(message)s",
    )

    if not debug:
        logging.getLogger("httpx").setLevel(logging.WARNING)
        logging.getLogger("httpcore").setLevel(logging.WARNING)

    logging.getLogger("heykaelo").setLevel(logging.DEBUG if debug else logging.INFO)


def _list_states(context: AppContext) -> None:
    states = context.sessions.list_states()
    if not states:
        print("No stored sessions.")
        return
    for state in states:
        mode = type(session_mode(state)).__name__
        updated = state.updated_at.isoformat(timespec="seconds") if state.updated_at else "-"
        print(f"{state.phone_number:<16} {mode:<13} business={state.business_id or '-'} updated={updated}")
        if state.metadata:
            print(f"    {json.dumps(state.metadata, default=str)[:200]}")


def _chat(context: AppContext, phone: str) -> None:
    print("\n" + "=" * 60)
    print("  HeyKaelo - CLI Chat")
    print("=" * 60)
    print(f"  Chatting as {phone}. Type 'setup' to onboard a business,")
    print("  'join <slug>' to pick one. 'quit' to exit, 'reset' to start over.")
    print("=" * 60 + "\n")

    while True:
        try:
            user_input = input("You: ").strip()
        except (KeyboardInterrupt, EOFError):
            print("\n\nGoodbye!")
            break

        if not user_input:
            continue

        if user_input.lower() in ("exit", "quit", "q"):
            print("\nSharp! Goodbye.")
            break

        if user_input.lower() == "reset":
            context.dispatcher.reset(phone)
            print("\n>> Session cleared.\n")
            continue

        media_url = None
        if user_input.startswith("/photo"):
            # "/photo <url> [caption]" simulates an image message
            _, _, rest = user_input.partition(" ")
            media_url, _, user_input = rest.partition(" ")

        reply = context.dispatcher.handle(phone, user_input, media_url or None)
        print(f"\nKaelo: {reply}\n")


def main():
    """Parse arguments and run the requested command."""
    parser = argparse.ArgumentParser(description="HeyKaelo assistant CLI")
    parser.add_argument(
        "--debug", action="store_true",
        help="Show all log messages including HTTP requests",
    )
    parser.add_argument("--phone", default=DEFAULT_PHONE, help="Sender phone number for the chat")
    parser.add_argument("--reset", metavar="PHONE", help="Delete the stored session for PHONE and exit")
    parser.add_argument("--list-states", action="store_true", help="List recent sessions and exit")
    args = parser.parse_args()

    load_dotenv()
    _configure_logging(debug=args.debug)
    context = build_context()

    if args.reset:
        removed = context.dispatcher.reset(args.reset)
        print(f"Session for {args.reset} {'removed' if removed else 'not found'}.")
        return
    if args.list_states:
        _list_states(context)
        return

    logger.info("Started CLI chat as %s", args.phone)
    _chat(context, args.phone)


if __name__ == "__main__":
    main()
