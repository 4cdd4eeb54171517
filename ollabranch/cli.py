#!/usr/bin/env python3
"""
Interactive CLI chat for an Ollama server.

Streams every answer to the terminal, keeps the conversation going through the
server's continuation tokens, and lets you fork the conversation into named
branches.  Diagram blocks found in an answer are listed and, with --render,
converted to PNG files in the work directory.
"""

import argparse
import sys
import uuid
from pathlib import Path
from typing import List, Optional, TextIO

from loguru import logger

from ollabranch.client import ProtocolClient
from ollabranch.codec import is_error_line
from ollabranch.conversation import Conversation
from ollabranch.errors import OllabranchError
from ollabranch.logging import setup_logger
from ollabranch.models import Response
from ollabranch.render import ArtifactRenderer
from ollabranch.settings import settings
from ollabranch.utils import encode_image_file

HELP = """Commands:
  /help              - Show this help message
  /branch <name>     - Fork the current conversation into <name>
  /switch <name>     - Continue on an existing branch
  /branches          - List branches
  /history           - Show the turns of the current branch
  /model <name>      - Talk to another model
  /models            - List models installed on the server
  /clear             - Forget every branch
  /quit, /exit       - Exit
  <message>          - Send message to the model
"""


class ChatCLI:
    def __init__(
        self,
        conversation: Conversation,
        model: str,
        *,
        render: bool = False,
        renderer: Optional[ArtifactRenderer] = None,
        out: Optional[TextIO] = None,
    ) -> None:
        self.conversation = conversation
        self.model = model
        self.render = render
        self.renderer = renderer
        self.out = out or sys.stdout
        self.running = True

    def _print(self, *parts: str, end: str = "\n") -> None:
        print(*parts, end=end, file=self.out, flush=True)

    # ------------------------------------------------------------------
    def handle_line(self, line: str, images: Optional[List[str]] = None) -> None:
        line = line.strip()
        if not line:
            return
        if not line.startswith("/"):
            self.handle_chat(line, images)
            return

        command, *args = line.split()
        sessions = self.conversation.sessions
        if command in ("/quit", "/exit"):
            self.running = False
        elif command == "/help":
            self._print(HELP)
        elif command == "/branch" and args:
            session = self.conversation.branch(args[0])
            self._print(f"Now on branch {session.name} ({len(session)} turns)")
        elif command == "/switch" and args:
            session = self.conversation.switch(args[0])
            self.model = session.model
            self._print(f"Now on branch {session.name} with {session.model}")
        elif command == "/branches":
            current = sessions.current_branch()
            for name in sessions.branches():
                marker = "*" if name == current else " "
                self._print(f" {marker} {name}")
        elif command == "/history":
            for i, turn in enumerate(self.conversation.history(), 1):
                self._print(f"  {i}. > {turn.request.prompt[:80]}")
                self._print(f"     < {turn.response.response[:80]}")
        elif command == "/model" and args:
            self.model = args[0]
            sessions.ensure_session(self.model)
            self._print(f"Model: {self.model} (branch {sessions.current_branch()})")
        elif command == "/models":
            for info in self.conversation.client.list_models():
                summary = info.summary()
                self._print(f"  {summary['name']:<40} {summary['size_gb']:>6} GB  {summary['parameter_size'] or ''}")
        elif command == "/clear":
            sessions.clear()
            self._print("All branches cleared")
        else:
            self._print(f"Unknown or incomplete command: {line} (try /help)")

    def handle_chat(self, message: str, images: Optional[List[str]] = None) -> Optional[Response]:
        def _printer(part: Response) -> bool:
            if not part.done:
                self._print(part.response, end="")
            return True

        result = self.conversation.ask_streaming(self.model, message, _printer, images=images)
        self._print("")
        if not isinstance(result, Response):
            return None
        if is_error_line(result.response):
            self._print(f"Server error: {result.response.strip()}")
            return result

        artifacts = self.conversation.artifacts(result)
        for artifact in artifacts:
            self._print(f"[{artifact.kind.value} block at {artifact.start}-{artifact.end}]")
        if self.render and artifacts and self.renderer is not None:
            for rendered in self.renderer.render_all(artifacts):
                if rendered.image:
                    target = self.renderer.work_dir / f"{rendered.artifact.kind.value}-{uuid.uuid4().hex[:8]}.png"
                    target.write_bytes(rendered.image)
                    self._print(f"  -> {target}")
                elif rendered.text:
                    self._print(rendered.text)
        logger.debug(f"[CLI] {result.eval_count} tokens, {result.tokens_per_second():.1f} tok/s")
        return result

    def loop(self) -> None:
        self._print(f"Chatting with {self.model} at {self.conversation.client.base_url}. /help for commands.")
        while self.running:
            try:
                line = input(f"[{self.conversation.sessions.current_branch() or self.model}] > ")
            except (EOFError, KeyboardInterrupt):
                break
            try:
                self.handle_line(line)
            except OllabranchError as exc:
                self._print(f"Error: {exc}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Branching chat with an Ollama server")
    parser.add_argument("--endpoint", type=str, default=settings.base_url, help="Ollama base URL")
    parser.add_argument("--model", type=str, default=settings.DEFAULT_MODEL, help="Model name")
    parser.add_argument("--prompt", type=str, help="Ask once and exit instead of chatting")
    parser.add_argument("--image", type=str, action="append", help="Image file to attach to --prompt (repeatable)")
    parser.add_argument("--render", action="store_true", help="Render diagram blocks to PNG files")
    parser.add_argument("--log-level", type=str, default=None, help="Override the configured log level")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logger(args.log_level.upper() if args.log_level else None)

    images = None
    if args.image:
        missing = [p for p in args.image if not Path(p).exists()]
        if missing:
            print(f"Image file not found: {', '.join(missing)}", file=sys.stderr)
            return 1
        images = [encode_image_file(p) for p in args.image]

    renderer = ArtifactRenderer() if args.render else None
    with Conversation(ProtocolClient(args.endpoint)) as conversation:
        cli = ChatCLI(conversation, args.model, render=args.render, renderer=renderer)
        if args.prompt:
            try:
                cli.handle_chat(args.prompt, images)
            except OllabranchError as exc:
                print(f"Error: {exc}", file=sys.stderr)
                return 1
            return 0
        cli.loop()
    return 0


if __name__ == "__main__":
    sys.exit(main())
