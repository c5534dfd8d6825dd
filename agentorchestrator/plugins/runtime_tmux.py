"""tmux runtime: one detached tmux session per orchestrator session."""

from __future__ import annotations

import asyncio
import logging
import os
import re
import tempfile
import time
import uuid

from agentorchestrator.models.plugin import PluginManifest, PluginSlot
from agentorchestrator.models.session import RuntimeHandle
from agentorchestrator.plugins.base import RuntimeCreateConfig
from agentorchestrator.plugins.shell import CommandError, check_output

logger = logging.getLogger(__name__)

manifest = PluginManifest(
    name="tmux",
    slot=PluginSlot.RUNTIME,
    description="Runtime plugin: tmux sessions",
)

SAFE_SESSION_ID = re.compile(r"^[a-zA-Z0-9_-]+$")

# send-keys mangles long input, so longer text goes through a paste buffer
PASTE_THRESHOLD = 200


def _validate_session_id(session_id: str) -> None:
    if not SAFE_SESSION_ID.match(session_id):
        raise ValueError(f"Invalid session ID {session_id!r}: must match {SAFE_SESSION_ID.pattern}")


class TmuxRuntime:
    """Runs each agent inside ``tmux new-session -d``.

    The session starts a login shell in the workspace; the launch command
    is then typed into it so the pane survives the agent exiting.
    """

    def __init__(self, enter_delay: float = 0.3) -> None:
        self.enter_delay = enter_delay

    async def create(self, config: RuntimeCreateConfig) -> RuntimeHandle:
        _validate_session_id(config.session_id)
        name = config.session_id

        args = ["tmux", "new-session", "-d", "-s", name, "-c", config.workspace_path]
        for key, value in config.environment.items():
            args.extend(["-e", f"{key}={value}"])
        await check_output(*args)

        try:
            if len(config.launch_command) > PASTE_THRESHOLD:
                await self._paste(name, config.launch_command)
                await asyncio.sleep(self.enter_delay)
                await check_output("tmux", "send-keys", "-t", name, "Enter")
            else:
                await check_output("tmux", "send-keys", "-t", name, config.launch_command, "Enter")
        except CommandError:
            await self._kill(name)
            raise

        logger.info("Started tmux session %s in %s", name, config.workspace_path)
        return RuntimeHandle(
            id=name,
            runtime_name=manifest.name,
            data={"created_at": time.time(), "workspace_path": config.workspace_path},
        )

    async def destroy(self, handle: RuntimeHandle) -> None:
        await self._kill(handle.id)

    async def send_message(self, handle: RuntimeHandle, message: str) -> None:
        # Clear any partial input first
        await check_output("tmux", "send-keys", "-t", handle.id, "C-u")
        if "\n" in message or len(message) > PASTE_THRESHOLD:
            await self._paste(handle.id, message)
        else:
            # -l so words like "Enter" are not read as key names
            await check_output("tmux", "send-keys", "-t", handle.id, "-l", message)
        await asyncio.sleep(self.enter_delay)
        await check_output("tmux", "send-keys", "-t", handle.id, "Enter")

    async def get_output(self, handle: RuntimeHandle, lines: int = 50) -> str:
        try:
            return await check_output("tmux", "capture-pane", "-t", handle.id, "-p", "-S", f"-{lines}")
        except CommandError:
            return ""

    async def is_alive(self, handle: RuntimeHandle) -> bool:
        try:
            await check_output("tmux", "has-session", "-t", handle.id)
        except CommandError:
            return False
        return True

    async def _paste(self, target: str, text: str) -> None:
        buffer_name = f"ao-{uuid.uuid4().hex[:12]}"
        fd, tmp_path = tempfile.mkstemp(prefix="ao-send-", suffix=".txt")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(text)
            await check_output("tmux", "load-buffer", "-b", buffer_name, tmp_path)
            await check_output("tmux", "paste-buffer", "-b", buffer_name, "-t", target, "-d")
        finally:
            os.unlink(tmp_path)

    async def _kill(self, name: str) -> None:
        try:
            await check_output("tmux", "kill-session", "-t", name)
        except CommandError:
            logger.debug("tmux session %s already gone", name)


def create(config: dict | None = None) -> TmuxRuntime:
    config = config or {}
    return TmuxRuntime(enter_delay=float(config.get("enter_delay", 0.3)))
