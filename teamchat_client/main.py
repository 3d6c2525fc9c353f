"""
Client entry point.

Loads configuration, configures logging, and runs an interactive chat
session on stdin/stdout.
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from typing import Any

import structlog

from teamchat_shared.logging_config import configure_logging
from teamchat_shared.schemas.events import EventType
from teamchat_shared.schemas.messages import MessageRead, MessageUser

from .client import ChatClient, ChatClientError
from .config import ClientConfig, load_config
from .previews import extract_urls, fetch_link_preview


def format_message(message: MessageRead) -> str:
    return f"[{message.time}] {message.user.username}: {message.text}"


async def handle_command(client: ChatClient, line: str) -> bool:
    """Run a slash command. Returns False when the session should end."""
    parts = line.split()
    command = parts[0]

    if command == "/quit":
        return False
    if command == "/switch" and len(parts) == 3:
        selection = await client.switch_channel(parts[1], parts[2])
        print(f"--- #{selection.channel_id} ({selection.project_id}) ---")
        for message in client.state.messages_for(selection.project_id, selection.channel_id):
            print(format_message(message))
    elif command == "/invite":
        invite = await client.create_invite()
        print(f"Invite link: {invite['inviteLink']}")
    else:
        print("Commands: /switch <project> <channel>, /invite, /quit")
    return True


async def run_session(config: ClientConfig, session_id: str | None = None) -> None:
    log = structlog.get_logger()
    user = MessageUser(username=config.user.username, avatar_url=config.user.resolved_avatar_url)
    client = ChatClient(
        config.server.url,
        user,
        verify_tls=config.server.verify_tls,
        request_timeout=config.server.request_timeout_seconds,
    )

    async def print_incoming(event_type: str, data: Any) -> None:
        if event_type != EventType.RECEIVE_MESSAGE.value:
            return
        message = MessageRead.model_validate(data)
        if (message.project_id, message.channel_id) != client.state.active.scope:
            return
        print(format_message(message))
        if config.link_previews and client.http is not None:
            for url in extract_urls(message.text):
                preview = await fetch_link_preview(client.http, url)
                if preview and preview.title:
                    print(f"    ↳ {preview.title}")

    client.on_event(print_incoming)
    await client.open()
    runner = asyncio.create_task(client.run_forever())
    try:
        # Wait for the first successful sync before taking input
        while not client.connected or not client.state.projects:
            await asyncio.sleep(0.1)
        if session_id:
            await client.join_session(session_id)

        active = client.state.active
        print(f"--- #{active.channel_id} ({active.project_id}) ---")
        for message in client.state.messages_for(active.project_id, active.channel_id):
            print(format_message(message))

        loop = asyncio.get_running_loop()
        while True:
            line = await loop.run_in_executor(None, sys.stdin.readline)
            if not line:
                break
            line = line.strip()
            if not line:
                continue
            try:
                if line.startswith("/"):
                    if not await handle_command(client, line):
                        break
                else:
                    await client.send_message(line)
            except ChatClientError as exc:
                log.error("client.command_failed", error=exc.message)
    finally:
        runner.cancel()
        try:
            await runner
        except asyncio.CancelledError:
            pass
        await client.close()


def run() -> None:
    """CLI entry point for the client."""
    parser = argparse.ArgumentParser(description="TeamChat terminal client")
    parser.add_argument(
        "-c", "--config",
        default="teamchat-client.yaml",
        help="Path to configuration file (default: teamchat-client.yaml)",
    )
    parser.add_argument(
        "-s", "--session",
        default=None,
        help="Invite session id to join after connecting",
    )
    args = parser.parse_args()

    try:
        config = load_config(args.config)
    except FileNotFoundError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        sys.exit(1)
    except Exception as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        sys.exit(1)

    configure_logging(config.logging.level, config.logging.format, stream=sys.stderr)
    log = structlog.get_logger()
    log.info("client.config_loaded", config_path=args.config, server=config.server.url)

    try:
        asyncio.run(run_session(config, args.session))
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    run()
