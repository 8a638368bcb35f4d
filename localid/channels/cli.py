"""Terminal consent surface.

Prints each consent card to stdout and reads the operator's answer from
stdin. The terminal is a single shared input, so prompts are answered one
at a time in arrival order; each answer is reported back with the session
id of the card it was typed for.
"""

from __future__ import annotations

import asyncio
import contextlib
import inspect
import sys
import threading
from collections.abc import Callable
from dataclasses import dataclass

from localid.models.consent import ConsentDecision, ConsentSession
from localid.protocols.consent import ConsentDecisionHandler


@dataclass
class CLIConsentConfig:
    color: bool = True


# ANSI codes; no colorama/rich dependency
_BOLD = "\033[1m"
_CYAN = "\033[36m"
_RESET = "\033[0m"

_YES = frozenset({"y", "yes"})


def _read_line(prompt: str) -> str | None:
    """Blocking readline, run on a daemon thread."""
    try:
        return input(prompt)
    except EOFError:
        return None


class CLIConsentSurface:
    channel_name = "cli"

    def __init__(
        self,
        config: CLIConsentConfig | None = None,
        *,
        read_line: Callable[[str], str | None] = _read_line,
        write: Callable[[str], None] | None = None,
    ) -> None:
        self._config = config or CLIConsentConfig()
        self._read_line = read_line
        self._write = write or self._print
        self._handler: ConsentDecisionHandler | None = None
        self._queue: asyncio.Queue[ConsentSession] = asyncio.Queue()
        self._queued: set[str] = set()
        self._active: ConsentSession | None = None
        self._worker: asyncio.Task[None] | None = None

        # Honor explicit config, but fall back to a TTY check so piped output stays clean.
        self._color = self._config.color and sys.stdout.isatty()

    # ── ConsentSurface ───────────────────────────────────────────────

    def register_decision_handler(self, handler: ConsentDecisionHandler | None) -> None:
        self._handler = handler

    async def present(self, session: ConsentSession) -> None:
        self._ensure_worker()
        self._queued.add(session.session_id)
        await self._queue.put(session)

    async def withdraw(self, session_id: str) -> None:
        self._queued.discard(session_id)
        active = self._active
        if active is not None and active.session_id == session_id:
            self._write(f"\n[consent] The request from {active.prompt.requester} is no longer pending.")

    # ── Lifecycle ────────────────────────────────────────────────────

    async def stop(self) -> None:
        if self._worker is not None:
            self._worker.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._worker
            self._worker = None

    def _ensure_worker(self) -> None:
        if self._worker is None or self._worker.done():
            self._worker = asyncio.create_task(self._prompt_loop())

    # ── Prompting ────────────────────────────────────────────────────

    async def _prompt_loop(self) -> None:
        while True:
            session = await self._queue.get()
            if session.session_id not in self._queued:
                # Withdrawn (expired) before the operator got to it.
                continue
            self._queued.discard(session.session_id)

            self._active = session
            try:
                decision = await self._ask(session)
            finally:
                self._active = None

            if decision is None:
                # EOF on stdin closes the prompt without an answer.
                decision = ConsentDecision(approved=False)
            accepted = await self._dispatch(session.session_id, decision)
            if not accepted:
                self._write("[consent] That request is no longer pending; your answer was not used.")

    async def _ask(self, session: ConsentSession) -> ConsentDecision | None:
        self._render_card(session)
        answer = await self._readline("Share your identity? [y/N] ")
        if answer is None:
            return None
        if answer.strip().lower() not in _YES:
            return ConsentDecision(approved=False)
        if not session.prompt.collect_identity:
            return ConsentDecision(approved=True)

        name = await self._readline("Name: ")
        if name is None:
            return None
        email = await self._readline("Email: ")
        if email is None:
            return None
        remember = await self._readline("Remember this identity for future requests? [y/N] ")
        return ConsentDecision(
            approved=True,
            name=name,
            email=email,
            remember=remember is not None and remember.strip().lower() in _YES,
        )

    async def _readline(self, prompt: str) -> str | None:
        # input() cannot be interrupted and asyncio.run joins executor threads
        # at shutdown, so the read runs on a daemon thread.
        loop = asyncio.get_running_loop()
        future: asyncio.Future[str | None] = loop.create_future()

        def _settle(line: str | None, error: BaseException | None) -> None:
            if future.done():
                return
            if error is not None:
                future.set_exception(error)
            else:
                future.set_result(line)

        def _read() -> None:
            line: str | None = None
            error: BaseException | None = None
            try:
                line = self._read_line(prompt)
            except Exception as exc:
                error = exc
            # The loop may already be closed if the agent shut down mid-prompt.
            with contextlib.suppress(RuntimeError):
                loop.call_soon_threadsafe(_settle, line, error)

        threading.Thread(target=_read, name="localid-consent-stdin", daemon=True).start()
        return await future

    async def _dispatch(self, session_id: str, decision: ConsentDecision) -> bool:
        handler = self._handler
        if handler is None:
            return False
        result = handler(session_id, decision)
        if inspect.isawaitable(result):
            result = await result
        return bool(result)

    # ── Output helpers ───────────────────────────────────────────────

    def _render_card(self, session: ConsentSession) -> None:
        prompt = session.prompt
        title = f"{prompt.requester} requests your identity"
        if self._color:
            title = f"{_BOLD}{_CYAN}{title}{_RESET}"
        lines = ["", title]
        if prompt.app_url:
            lines.append(f"  Origin:  {prompt.app_url}")
        if prompt.collect_identity:
            lines.append("  No identity is configured yet; you will be asked for a name and email.")
        else:
            lines.append(f"  Name:    {prompt.name}")
            lines.append(f"  Email:   {prompt.email}")
        lines.append(f"  Expires: {session.deadline.astimezone().strftime('%H:%M:%S')}")
        for line in lines:
            self._write(line)

    @staticmethod
    def _print(text: str) -> None:
        print(text, flush=True)


__all__ = ["CLIConsentConfig", "CLIConsentSurface"]
