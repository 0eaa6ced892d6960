#!/usr/bin/env python3
"""
Launch the chat host for one bot config.
"""

from __future__ import annotations

import argparse
import os
from pathlib import Path

import uvicorn


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Run the Copilot Studio SSO chat host for a chatbot config.",
    )
    parser.add_argument(
        "--config",
        required=True,
        help="Required path to chatbot config JSON (botURL, customScope, clientID, authority, ...).",
    )
    parser.add_argument("--host", default="127.0.0.1", help="Host bind address.")
    parser.add_argument("--port", type=int, default=8780, help="Host bind port.")
    parser.add_argument("--user-email", default=None, help="Signed-in user's email (login hint).")
    parser.add_argument("--user-name", default=None, help="Signed-in user's display name.")
    parser.add_argument(
        "--token-cache",
        default=None,
        help="Persist the MSAL token cache to this file.",
    )
    parser.add_argument("--log-level", default="info", help="Uvicorn log level.")
    return parser.parse_args()


def main() -> None:
    args = parse_args()

    os.environ["CHATBOT_CONFIG_PATH"] = str(Path(args.config).expanduser())
    os.environ["CHAT_HOST"] = args.host
    os.environ["CHAT_PORT"] = str(args.port)
    if args.user_email:
        os.environ["USER_EMAIL"] = args.user_email
    if args.user_name:
        os.environ["USER_DISPLAY_NAME"] = args.user_name
    if args.token_cache:
        os.environ["TOKEN_CACHE_PATH"] = str(Path(args.token_cache).expanduser())

    from chat_host import app  # Import after env config

    print(
        f"Starting chat host bind=http://{args.host}:{args.port} "
        f"config={os.environ['CHATBOT_CONFIG_PATH']}"
    )
    uvicorn.run(app, host=args.host, port=args.port, log_level=args.log_level)


if __name__ == "__main__":
    main()
