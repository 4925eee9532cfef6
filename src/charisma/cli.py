"""Command-line chat client.

Connects to a playthrough, joins one conversation and prints character
messages while sending typed lines as replies. Text only.
"""

import argparse
import asyncio
import logging
import signal
import sys
from pathlib import Path

from charisma.api import PlayApiClient
from charisma.config import ClientConfig
from charisma.conversation import Conversation
from charisma.errors import CharismaError
from charisma.events import ConnectionStatus, ConversationEvent, PlaythroughEvent
from charisma.playthrough import Playthrough
from charisma.types import (
    EpisodeCompleteEvent,
    MessageEvent,
    ProblemEvent,
    ReplyEvent,
    TransportError,
)
from charisma.utils.logging import setup_logging

logger = logging.getLogger(__name__)

HELP_TEXT = """
Commands:
  /tap    - Continue a tap-to-continue message
  /resume - Resume the conversation
  /quit   - Exit client
  /help   - Show this help
"""


class ChatClient:
    """Interactive client for a single conversation."""

    def __init__(self, playthrough: Playthrough, conversation: Conversation) -> None:
        self.playthrough = playthrough
        self.conversation = conversation
        self.running = True

        playthrough.on(PlaythroughEvent.CONNECTION_STATUS, self.on_connection_status)
        playthrough.on(PlaythroughEvent.PROBLEM, self.on_problem)
        playthrough.on(PlaythroughEvent.ERROR, self.on_error)
        conversation.on(ConversationEvent.MESSAGE, self.on_message)
        conversation.on(ConversationEvent.START_TYPING, lambda _event: print("...", flush=True))
        conversation.on(ConversationEvent.EPISODE_COMPLETE, self.on_episode_complete)
        conversation.on(ConversationEvent.PLAYBACK_START, lambda: print("-- catching up --"))
        conversation.on(ConversationEvent.PLAYBACK_STOP, lambda: print("-- caught up --"))

    def on_connection_status(self, status: ConnectionStatus) -> None:
        print(f"[{status.value}]")
        if status is ConnectionStatus.DISCONNECTED:
            self.running = False

    def on_message(self, event: MessageEvent) -> None:
        text = event.message.get("text", "")
        character = event.message.get("character") or {}
        name = character.get("name") if isinstance(character, dict) else None
        print(f"{name or 'Narrator'}: {text}" if text else f"<{event.type} message>")
        if event.tap_to_continue:
            print("(type /tap to continue)")
        if event.end_story:
            print("The story has ended.")

    def on_episode_complete(self, event: EpisodeCompleteEvent) -> None:
        print(f"Episode {event.completed_episode_id} complete.")

    def on_problem(self, problem: ProblemEvent) -> None:
        print(f"Problem ({problem.type}): {problem.error}")

    def on_error(self, error: TransportError) -> None:
        logger.error("Transport error", extra={"code": error.code, "error": error.message})

    async def input_loop(self) -> None:
        """Read lines from stdin and turn them into commands."""
        print(HELP_TEXT)
        loop = asyncio.get_running_loop()

        while self.running:
            try:
                text = await loop.run_in_executor(None, input, "You: ")
            except EOFError:
                break

            text = text.strip()
            if not text:
                continue

            if text.startswith("/"):
                command = text[1:].lower()
                if command == "quit":
                    break
                elif command == "help":
                    print(HELP_TEXT)
                elif command == "tap":
                    self.conversation.tap()
                elif command == "resume":
                    self.conversation.resume()
                else:
                    print(f"Unknown command: {command}")
                    print("Type /help for available commands")
            else:
                self.conversation.reply(ReplyEvent(text=text))

        self.running = False


async def run_client(args: argparse.Namespace) -> int:
    """Resolve a token and conversation, then run the chat loop.

    Returns:
        Process exit code
    """
    config = ClientConfig.from_yaml_with_defaults(Path(args.config) if args.config else None)
    if args.base_url:
        config = ClientConfig.model_validate({**config.model_dump(), "base_url": args.base_url})
    setup_logging(config.log_level, verbose=args.verbose)

    async with PlayApiClient(config.base_url) as api:
        token = args.token
        if token is None:
            token = await api.create_playthrough_token(
                story_id=args.story_id,
                version=args.version,
                api_key=args.api_key,
            )

        playthrough = Playthrough(token, config, api=api)
        conversation_uuid = args.conversation or await playthrough.create_conversation()
        conversation = playthrough.join_conversation(conversation_uuid)
        client = ChatClient(playthrough, conversation)

        loop = asyncio.get_running_loop()
        stop = asyncio.Event()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, stop.set)

        try:
            await playthrough.connect()
            if not args.conversation:
                conversation.start()

            input_task = asyncio.create_task(client.input_loop())
            stop_task = asyncio.create_task(stop.wait())
            await asyncio.wait({input_task, stop_task}, return_when=asyncio.FIRST_COMPLETED)
            stop_task.cancel()
        finally:
            for sig in (signal.SIGINT, signal.SIGTERM):
                loop.remove_signal_handler(sig)
            await playthrough.disconnect()

    return 0


def main() -> None:
    """Main entry point for the chat client."""
    parser = argparse.ArgumentParser(description="Text chat client for a playthrough")
    parser.add_argument("--config", type=str, default=None, help="YAML configuration file")
    parser.add_argument("--base-url", type=str, default=None, help="Backend base URL")
    parser.add_argument("--token", type=str, default=None, help="Existing playthrough token")
    parser.add_argument("--story-id", type=int, default=None, help="Story to start")
    parser.add_argument("--version", type=int, default=None, help="Story version (-1 = draft)")
    parser.add_argument("--api-key", type=str, default=None, help="Story API key")
    parser.add_argument("--conversation", type=str, default=None, help="Conversation uuid")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable verbose logging")

    args = parser.parse_args()
    if args.token is None and args.story_id is None:
        parser.error("one of --token or --story-id is required")

    try:
        sys.exit(asyncio.run(run_client(args)))
    except CharismaError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    except KeyboardInterrupt:
        print("\nExiting...")
        sys.exit(0)


if __name__ == "__main__":
    main()
