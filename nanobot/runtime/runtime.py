"""Wiring of the nanobot runtime and the terminal front end.

:func:`build_runtime` assembles the bus, provider, scheduler and agent
loop from :class:`~nanobot.runtime.settings.Settings`.  The coroutines
below drive that runtime from a terminal: one-shot (``agent -m``) and
interactive.
"""

from __future__ import annotations

import asyncio
import logging
import os
import sys
from dataclasses import dataclass
from logging.handlers import RotatingFileHandler
from typing import Any, Awaitable, Callable, Dict, List, Optional

from ..agent_loop import AgentLoop, AgentLoopConfig
from ..agent_types import InboundMessage, OutboundMessage
from ..bus import MessageBus
from ..cron import CronJob, CronService
from ..providers import LLMProvider, create_provider
from .constants import CLI_CHANNEL, CLI_CHAT_ID, CRON_CHANNEL, EXIT_COMMANDS, LOG_FILE_NAME
from .event_logger import make_event_logger
from .settings import Settings

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
LOG_MAX_BYTES = 5 * 1024 * 1024
LOG_BACKUP_COUNT = 3

ENV_TEMPLATE = """# nanobot configuration
# Provider keys (the first configured one is used unless NANOBOT_PROVIDER is set)
OPENROUTER_API_KEY=
# DEEPSEEK_API_KEY=
# OPENAI_API_KEY=
# NANOBOT_PROVIDER=
# NANOBOT_MODEL=

# Tools
# BRAVE_API_KEY=
# NANOBOT_RESTRICT_TO_WORKSPACE=false
# NANOBOT_MEDIA_API_KEY=

# Logging: quiet, simple, full, debug
NANOBOT_LOG_LEVEL=quiet
"""

SKILLS_README = """# Skills

Each skill lives in its own directory with a `SKILL.md` file:

    skills/<name>/SKILL.md

The file may start with YAML frontmatter:

    ---
    description: What the skill does
    nanobot:
      always: false
      requires:
        bins: [curl]
        env: [SOME_API_KEY]
    ---

Use `{baseDir}` in the body to refer to the skill directory.
"""


def setup_logging(workspace: str, level: str = "INFO") -> str:
    """Attach a rotating file handler at ``<workspace>/logs/nanobot.log``.

    Returns the log file path.  Calling it again for the same file does
    not add a second handler.
    """
    log_dir = os.path.join(os.path.abspath(os.path.expanduser(workspace)), "logs")
    os.makedirs(log_dir, exist_ok=True)
    log_path = os.path.join(log_dir, LOG_FILE_NAME)

    root = logging.getLogger("nanobot")
    root.setLevel(getattr(logging, str(level).upper(), logging.INFO))
    for handler in root.handlers:
        if isinstance(handler, RotatingFileHandler) and handler.baseFilename == log_path:
            return log_path
    handler = RotatingFileHandler(log_path, maxBytes=LOG_MAX_BYTES, backupCount=LOG_BACKUP_COUNT, encoding="utf-8")
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root.addHandler(handler)
    return log_path


@dataclass
class Runtime:
    settings: Settings
    bus: MessageBus
    provider: LLMProvider
    cron: CronService
    loop: AgentLoop
    event_log: Callable[[Dict[str, Any]], None]


def _make_cron_callback(bus: MessageBus) -> Callable[[CronJob], Awaitable[None]]:
    async def _on_job(job: CronJob) -> None:
        await bus.publish_inbound(
            InboundMessage(
                channel=job.payload.channel or CRON_CHANNEL,
                sender_id="cron",
                chat_id=job.payload.to or job.id,
                content=job.payload.message,
                metadata={"job_id": job.id},
            )
        )

    return _on_job


def build_runtime(
    settings: Settings,
    *,
    provider: Optional[LLMProvider] = None,
    event_sink: Callable[[str], None] = print,
) -> Runtime:
    """Assemble bus, provider, scheduler and agent loop.

    Raises
    ------
    ProviderConfigError
        If ``provider`` is not given and no provider is configured.
    """
    workspace = settings.workspace_path
    os.makedirs(workspace, exist_ok=True)
    bus = MessageBus()
    if provider is None:
        provider = create_provider(settings)
    cron = CronService(os.path.join(workspace, "cron.json"), on_job=_make_cron_callback(bus))
    event_log = make_event_logger(settings.log_level, sink=event_sink)
    config = AgentLoopConfig(
        workspace=workspace,
        model=settings.model or None,
        max_iterations=settings.max_tool_iterations,
        system_max_iterations=settings.system_max_iterations,
        subagent_max_iterations=settings.subagent_max_iterations,
        history_limit=settings.history_limit,
        request_timeout_s=settings.request_timeout_s,
        restrict_to_workspace=settings.restrict_to_workspace,
        exec_config=settings.exec_config(),
        brave_api_key=settings.brave_api_key,
        web_search_max_results=settings.web_search_max_results,
        web_fetch_max_chars=settings.web_fetch_max_chars,
        media_config=settings.media_config(),
    )
    loop = AgentLoop(bus, provider, config, cron_service=cron, on_event=event_log)
    logger.info("Runtime ready: workspace=%s model=%s tools=%s", workspace, loop.model, ", ".join(loop.tools.names()))
    return Runtime(settings=settings, bus=bus, provider=provider, cron=cron, loop=loop, event_log=event_log)


###############################################################################
# Terminal front end
###############################################################################


def _stdout_write(text: str) -> None:
    sys.stdout.write(text)
    sys.stdout.flush()


class TerminalPrinter:
    """Outbound handler for the ``cli`` channel.

    Live streams are written fragment by fragment as they arrive; finished
    messages are written whole.  Every delivered reply is kept in
    :attr:`replies`.
    """

    def __init__(self, write: Callable[[str], None] = _stdout_write) -> None:
        self.write = write
        self.replies: List[str] = []

    async def __call__(self, msg: OutboundMessage) -> None:
        if msg.is_stream:
            parts: List[str] = []
            async for fragment in msg.stream:
                parts.append(fragment)
                self.write(fragment)
            self.write("\n")
            self.replies.append("".join(parts))
            return
        text = msg.content
        if msg.message_type != "text" and msg.media:
            text = f"[{msg.message_type}] {msg.media}" + (f"\n{text}" if text else "")
        self.write(f"{text}\n")
        self.replies.append(text)


async def _read_input(prompt: str) -> str:
    return await asyncio.to_thread(input, prompt)


async def run_once(runtime: Runtime, text: str, printer: Optional[TerminalPrinter] = None) -> List[str]:
    """Process one ``cli`` message, print the reply and return the replies."""
    printer = printer or TerminalPrinter()
    unsubscribe = runtime.bus.subscribe_outbound(CLI_CHANNEL, printer)
    dispatcher = asyncio.create_task(runtime.bus.dispatch_outbound(poll_interval_s=0.1))
    try:
        msg = InboundMessage(channel=CLI_CHANNEL, sender_id="user", chat_id=CLI_CHAT_ID, content=text)
        await runtime.loop.handle_message(msg)
        await runtime.bus.drain()
    finally:
        runtime.bus.stop()
        await dispatcher
        unsubscribe()
    return printer.replies


async def run_interactive(
    runtime: Runtime,
    read_input: Callable[[str], Awaitable[str]] = _read_input,
    printer: Optional[TerminalPrinter] = None,
) -> None:
    """Prompt loop on the ``cli`` channel.

    The agent loop and the scheduler keep running in the background, so
    subagent reports and reminders are printed between prompts.
    """
    printer = printer or TerminalPrinter()
    unsubscribe = runtime.bus.subscribe_outbound(CLI_CHANNEL, printer)
    background = [
        asyncio.create_task(runtime.bus.dispatch_outbound(poll_interval_s=0.1)),
        asyncio.create_task(runtime.loop.run(poll_interval_s=0.1)),
        asyncio.create_task(runtime.cron.run()),
    ]
    printer.write("nanobot 🐈 (type 'exit' to quit, '/new' to start a new topic)\n")
    try:
        while True:
            try:
                user_message = (await read_input("You: ")).strip()
            except (EOFError, KeyboardInterrupt):
                printer.write("\nGoodbye!\n")
                break
            if not user_message:
                continue
            if user_message.lower() in EXIT_COMMANDS:
                printer.write("Goodbye!\n")
                break
            msg = InboundMessage(channel=CLI_CHANNEL, sender_id="user", chat_id=CLI_CHAT_ID, content=user_message)
            await runtime.loop.handle_message(msg)
            await runtime.bus.drain()
    finally:
        runtime.loop.stop()
        runtime.cron.stop()
        await runtime.bus.drain()
        runtime.bus.stop()
        for task in background:
            task.cancel()
        await asyncio.gather(*background, return_exceptions=True)
        unsubscribe()


def onboard(workspace: str) -> List[str]:
    """Create the workspace skeleton; existing files are left untouched.

    Returns the paths that were created.
    """
    root = os.path.abspath(os.path.expanduser(workspace))
    created: List[str] = []
    for directory in (root, os.path.join(root, "memory"), os.path.join(root, "skills")):
        if not os.path.isdir(directory):
            os.makedirs(directory, exist_ok=True)
            created.append(directory)
    files = {
        os.path.join(root, "skills", "README.md"): SKILLS_README,
        os.path.join(root, "memory", "MEMORY.md"): "# Long-term Memory\n",
        os.path.join(root, ".env"): ENV_TEMPLATE,
    }
    for path, content in files.items():
        if os.path.exists(path):
            continue
        with open(path, "w", encoding="utf-8") as handle:
            handle.write(content)
        created.append(path)
    return created


__all__ = [
    "Runtime",
    "TerminalPrinter",
    "build_runtime",
    "setup_logging",
    "run_once",
    "run_interactive",
    "onboard",
]
