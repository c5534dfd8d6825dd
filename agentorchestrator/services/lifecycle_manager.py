"""Lifecycle manager: polls sessions, tracks PR state and dispatches reactions."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field

from agentorchestrator.config import AppConfig, ProjectConfig, ReactionConfig
from agentorchestrator.errors import SessionNotFound
from agentorchestrator.models.plugin import PluginSlot
from agentorchestrator.models.reaction import (
    BUGBOT_COMMENTS,
    CHANGES_REQUESTED,
    CI_FAILED,
    EventPriority,
    NotificationEvent,
    ReactionAction,
    ReactionOccurrence,
    ReactionResult,
    fingerprint,
)
from agentorchestrator.models.scm import CheckStatus, PRState, ReviewDecision
from agentorchestrator.models.session import ActivityState, Session, SessionStatus
from agentorchestrator.plugins.base import SCM, Agent, Runtime
from agentorchestrator.plugins.registry import PluginRegistry
from agentorchestrator.services.reaction_message import build_reaction_message
from agentorchestrator.services.session_manager import SessionManager

logger = logging.getLogger(__name__)

REACTION_EVENTS = {
    CI_FAILED: "ci.failing",
    CHANGES_REQUESTED: "review.changes_requested",
    BUGBOT_COMMENTS: "automated_review.found",
}


def infer_priority(event_type: str) -> EventPriority:
    if "needs_input" in event_type or "stuck" in event_type or "errored" in event_type:
        return EventPriority.URGENT
    if "merged" in event_type or "completed" in event_type or "ready" in event_type:
        return EventPriority.ACTION
    if any(w in event_type for w in ("fail", "changes_requested", "exited", "closed")):
        return EventPriority.WARNING
    return EventPriority.INFO


def _advance(status: SessionStatus) -> Callable[[Session], Session]:
    """Mutator moving a session forward to *status* when the move is still legal."""

    def mutate(session: Session) -> Session:
        if session.status.can_transition_to(status):
            return session.with_status(status)
        return session

    return mutate


@dataclass
class _Attempts:
    """Failed dispatches of one pending occurrence."""

    count: int = 0
    since: float = field(default_factory=time.monotonic)


class LifecycleManager:
    """Runs the poll loop.

    Each tick checks every non-terminal session: activity, PR state, and
    the three reaction triggers. A reaction fires once per distinct
    trigger fingerprint; a failed dispatch is retried on later ticks until
    it succeeds or the trigger clears. An occurrence that keeps failing past
    its reaction's retry or time limit is escalated to the notifiers once and
    then treated as handled. The fingerprint table lives in memory only.
    """

    def __init__(
        self,
        config: AppConfig,
        registry: PluginRegistry,
        session_manager: SessionManager,
    ) -> None:
        self._config = config
        self._registry = registry
        self._sessions = session_manager
        self._fingerprints: dict[tuple[str, str], str] = {}
        self._pending: dict[tuple[str, str], ReactionOccurrence] = {}
        self._attempts: dict[tuple[str, str], _Attempts] = {}
        self._check_locks: dict[str, asyncio.Lock] = {}
        self._task: asyncio.Task | None = None
        self._ticking = False
        self._interval = config.lifecycle.poll_interval

    # --- loop control ---

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self, interval: float | None = None) -> None:
        """Start the background poll loop; calling it again while running does nothing."""
        if self.running:
            return
        self._interval = (
            interval if interval is not None else self._config.lifecycle.poll_interval
        )
        self._task = asyncio.ensure_future(self._loop())
        logger.info("Lifecycle loop started (interval=%.1fs)", self._interval)

    async def stop(self) -> None:
        if self._task is None:
            return
        task, self._task = self._task, None
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("Lifecycle loop stopped")

    async def _loop(self) -> None:
        while True:
            await self.tick()
            await asyncio.sleep(self._interval)

    async def tick(self) -> bool:
        """Run one poll cycle. Returns False when another tick is still in progress."""
        if self._ticking:
            logger.debug("Previous tick still running, skipping")
            return False
        self._ticking = True
        try:
            await asyncio.wait_for(self._poll_all(), timeout=self._config.lifecycle.tick_timeout)
        except asyncio.TimeoutError:
            logger.warning("Tick exceeded %.0fs and was cancelled", self._config.lifecycle.tick_timeout)
        except Exception:
            logger.warning("Tick failed", exc_info=True)
        finally:
            self._ticking = False
        return True

    async def check(self, session_id: str) -> list[ReactionResult]:
        """Poll a single session now."""
        if self._sessions.get(session_id) is None:
            raise SessionNotFound(session_id)
        return await self._check_session(session_id)

    def get_fingerprints(self) -> dict[tuple[str, str], str]:
        return dict(self._fingerprints)

    # --- polling ---

    async def _poll_all(self) -> None:
        sessions = [s for s in self._sessions.list() if not s.status.is_terminal]
        semaphore = asyncio.Semaphore(self._config.lifecycle.max_concurrency)

        async def guarded(session_id: str) -> None:
            async with semaphore:
                try:
                    await self._check_session(session_id)
                except Exception:
                    logger.warning("Poll failed for session %s", session_id, exc_info=True)

        await asyncio.gather(*(guarded(s.id) for s in sessions))
        self._prune()

    def _prune(self) -> None:
        live = {s.id for s in self._sessions.list() if not s.status.is_terminal}
        for table in (self._fingerprints, self._pending, self._attempts):
            for key in [k for k in table if k[0] not in live]:
                del table[key]
        idle = [s for s, lock in self._check_locks.items() if s not in live and not lock.locked()]
        for session_id in idle:
            del self._check_locks[session_id]

    async def _check_session(self, session_id: str) -> list[ReactionResult]:
        lock = self._check_locks.setdefault(session_id, asyncio.Lock())
        async with lock:
            session = self._sessions.get(session_id)
            if session is None or session.status.is_terminal:
                return []

            project = self._config.projects.get(session.project_id)
            handle = session.runtime_handle
            runtime: Runtime | None = (
                self._registry.get(PluginSlot.RUNTIME, handle.runtime_name) if handle else None
            )
            agent: Agent | None = (
                self._registry.get(PluginSlot.AGENT, self._config.agent_for(project))
                if project else None
            )
            scm: SCM | None = self._registry.get(PluginSlot.SCM, project.scm) if project else None

            session = await self._refresh_activity(session, agent, runtime)
            session = await self._refresh_agent_info(session, agent)
            if scm is None or project is None:
                return []

            session = await self._refresh_pr(session, project, scm)
            if session.pr is None or session.status.is_terminal:
                return []

            candidates = await self._derive_candidates(session, scm)
            return await self._react(session, candidates, scm, runtime)

    async def _refresh_activity(
        self, session: Session, agent: Agent | None, runtime: Runtime | None
    ) -> Session:
        handle = session.runtime_handle
        if agent is None or handle is None:
            return session

        if not await agent.is_process_running(handle):
            activity = ActivityState.EXITED
        else:
            activity = await agent.get_activity_state(session)
            if activity == ActivityState.UNKNOWN and runtime is not None:
                output = await runtime.get_output(handle)
                if output and output.strip():
                    activity = agent.detect_activity(output)

        if activity == ActivityState.UNKNOWN or activity == session.activity:
            return session

        previous = session.activity
        session = await self._sessions.update(session.id, lambda s: s.with_activity(activity))
        logger.debug("Session %s activity %s -> %s", session.id, previous.value, activity.value)
        if activity == ActivityState.WAITING_INPUT:
            await self._announce(session, "session.needs_input", f"{session.id} is waiting for input")
        elif activity == ActivityState.EXITED:
            await self._announce(session, "session.exited", f"{session.id}: agent process exited")
        return session

    async def _refresh_agent_info(self, session: Session, agent: Agent | None) -> Session:
        if agent is None or session.runtime_handle is None:
            return session
        try:
            info = await agent.get_session_info(session)
        except Exception:
            logger.warning("Could not read agent session info for %s", session.id, exc_info=True)
            return session
        if info is None or info == session.agent_info:
            return session
        return await self._sessions.update(session.id, lambda s: s.with_agent_info(info))

    async def _refresh_pr(self, session: Session, project: ProjectConfig, scm: SCM) -> Session:
        if session.pr is None:
            if not session.branch:
                return session
            pr = await scm.detect_pr(session, project)
            if pr is None:
                return session
            session = await self._sessions.update(
                session.id, lambda s: _advance(SessionStatus.PR_OPEN)(s.with_pr(pr))
            )
            logger.info("Session %s opened PR #%d", session.id, pr.number)
            await self._announce(session, "pr.created", f"{session.id}: PR #{pr.number} opened {pr.url}")

        state = await scm.get_pr_state(session.pr)
        if state == PRState.MERGED:
            session = await self._sessions.update(session.id, _advance(SessionStatus.MERGED))
            await self._announce(session, "pr.merged", f"{session.id}: PR #{session.pr.number} merged")
        elif state == PRState.CLOSED:
            session = await self._sessions.update(session.id, _advance(SessionStatus.KILLED))
            await self._announce(
                session, "pr.closed", f"{session.id}: PR #{session.pr.number} closed without merge"
            )
        return session

    async def _derive_candidates(self, session: Session, scm: SCM) -> dict[str, str | None]:
        """Fingerprint per reaction key, or None when the key has no trigger."""
        pr = session.pr
        checks, decision, comments, automated = await asyncio.gather(
            scm.get_ci_checks(pr),
            scm.get_review_decision(pr),
            scm.get_pending_comments(pr),
            scm.get_automated_comments(pr),
        )

        failing = [c.name for c in checks if c.status == CheckStatus.FAILED]
        unresolved = [c.id for c in comments if not c.is_resolved]
        # Other decisions leave the fingerprint to the unresolved comments
        decision_parts = (
            [f"decision:{ReviewDecision.CHANGES_REQUESTED.value}"]
            if decision == ReviewDecision.CHANGES_REQUESTED else []
        )

        return {
            CI_FAILED: fingerprint(failing) if failing else None,
            CHANGES_REQUESTED: (
                fingerprint([*decision_parts, *unresolved])
                if decision_parts or unresolved else None
            ),
            BUGBOT_COMMENTS: fingerprint(c.id for c in automated) if automated else None,
        }

    # --- reactions ---

    async def _react(
        self,
        session: Session,
        candidates: dict[str, str | None],
        scm: SCM,
        runtime: Runtime | None,
    ) -> list[ReactionResult]:
        results = []
        for reaction_key, fp in candidates.items():
            key = (session.id, reaction_key)
            if fp is None:
                self._forget(key)
                continue

            reaction = self._config.reaction_for(session.project_id, reaction_key)
            pending = self._pending.get(key)
            if pending is not None and pending.fingerprint == fp:
                occurrence = pending
                attempts = self._attempts[key]
                delay = reaction.escalation_delay if reaction else None
                if delay is not None and time.monotonic() - attempts.since >= delay:
                    results.append(
                        await self._escalate(session, occurrence, reaction, attempts, "time limit")
                    )
                    continue
            elif self._fingerprints.get(key) == fp:
                self._pending.pop(key, None)
                self._attempts.pop(key, None)
                continue
            else:
                occurrence = ReactionOccurrence(session.id, reaction_key, fp)
                attempts = _Attempts()

            result = await self._dispatch(session, occurrence, scm, runtime)
            if result.success:
                self._fingerprints[key] = fp
                self._pending.pop(key, None)
                self._attempts.pop(key, None)
            else:
                self._pending[key] = occurrence
                self._attempts[key] = attempts
                attempts.count += 1
                if reaction is not None and attempts.count > reaction.attempt_limit:
                    result = await self._escalate(
                        session, occurrence, reaction, attempts, "retry limit"
                    )
            results.append(result)
        return results

    def _forget(self, key: tuple[str, str]) -> None:
        self._fingerprints.pop(key, None)
        self._pending.pop(key, None)
        self._attempts.pop(key, None)

    async def _escalate(
        self,
        session: Session,
        occurrence: ReactionOccurrence,
        reaction: ReactionConfig,
        attempts: _Attempts,
        reason: str,
    ) -> ReactionResult:
        """Hand a stuck occurrence to a human and stop retrying it."""
        key = occurrence.key
        self._pending.pop(key, None)
        self._attempts.pop(key, None)
        self._fingerprints[key] = occurrence.fingerprint

        logger.warning(
            "Reaction %s for %s escalated (%s, %d failed attempts)",
            occurrence.reaction_key, session.id, reason, attempts.count,
        )
        event = self._event(
            session,
            "reaction.escalated",
            f"{session.id}: reaction '{occurrence.reaction_key}' needs a human ({reason})",
            priority=EventPriority.URGENT,
            data={
                "reaction": occurrence.reaction_key,
                "fingerprint": occurrence.fingerprint,
                "reason": reason,
                "attempts": attempts.count,
                "elapsed": round(time.monotonic() - attempts.since, 1),
            },
        )
        await self._notify(event)
        return ReactionResult(
            occurrence, reaction.action, False, error=f"escalated: {reason}", escalated=True
        )

    async def _dispatch(
        self,
        session: Session,
        occurrence: ReactionOccurrence,
        scm: SCM,
        runtime: Runtime | None,
    ) -> ReactionResult:
        reaction = self._config.reaction_for(session.project_id, occurrence.reaction_key)
        if reaction is None:
            logger.debug("No reaction configured for %s", occurrence.reaction_key)
            return ReactionResult(occurrence, ReactionAction.NOTIFY, success=True)

        send = reaction.action.sends and reaction.auto
        notify = reaction.action.notifies
        if not send and not notify:
            logger.info(
                "Reaction %s for %s skipped (auto disabled)", occurrence.reaction_key, session.id
            )
            return ReactionResult(occurrence, reaction.action, success=True)

        message = await build_reaction_message(
            occurrence.reaction_key, reaction.message, session, scm, runtime
        )
        if not message:
            return ReactionResult(occurrence, reaction.action, success=True)

        if send:
            try:
                await self._sessions.send(session.id, message)
            except Exception as e:
                logger.warning(
                    "Reaction %s failed for %s, will retry", occurrence.reaction_key, session.id,
                    exc_info=True,
                )
                return ReactionResult(occurrence, reaction.action, False, message, str(e))

        if notify:
            event = self._event(
                session,
                REACTION_EVENTS.get(occurrence.reaction_key, occurrence.reaction_key),
                message,
                priority=reaction.priority,
                data={"reaction": occurrence.reaction_key, "fingerprint": occurrence.fingerprint},
            )
            delivered = await self._notify(event)
            # For notify-only reactions an undelivered notification is a failed dispatch
            if not delivered and not send:
                return ReactionResult(
                    occurrence, reaction.action, False, message, "no notifier accepted the event"
                )

        logger.info("Reaction %s dispatched for %s", occurrence.reaction_key, session.id)
        return ReactionResult(occurrence, reaction.action, True, message)

    # --- notifications ---

    def _event(
        self,
        session: Session,
        event_type: str,
        message: str,
        priority: EventPriority | None = None,
        data: dict | None = None,
    ) -> NotificationEvent:
        payload = {"branch": session.branch, "status": session.status.value}
        if session.pr:
            payload["pr"] = session.pr.url
        payload.update(data or {})
        return NotificationEvent(
            type=event_type,
            priority=priority or infer_priority(event_type),
            session_id=session.id,
            project_id=session.project_id,
            message=message,
            data=payload,
        )

    async def _announce(self, session: Session, event_type: str, message: str) -> None:
        await self._notify(self._event(session, event_type, message))

    async def _notify(self, event: NotificationEvent) -> bool:
        """Send *event* to the notifiers routed for its priority.

        Returns True when at least one notifier accepted it, or none is routed.
        """
        names = self._config.notifiers_for(event.priority)
        if not names:
            return True
        delivered = False
        for name in names:
            notifier = self._registry.get(PluginSlot.NOTIFIER, name)
            if notifier is None:
                logger.warning("Notifier '%s' is not registered", name)
                continue
            try:
                await notifier.notify(event)
                delivered = True
            except Exception:
                logger.warning("Notifier '%s' failed for %s", name, event.type, exc_info=True)
        return delivered
