"""One client-facing analysis run, streamed as SSE events."""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from enum import Enum
from typing import AsyncGenerator, Iterable
from uuid import uuid4

from app.agents.orchestrator import FanOutOrchestrator
from app.agents.perspective import DEFAULT_PERSPECTIVES
from app.agents.reviewer import ReviewerAgent
from app.models.analysis import DEFAULT_UNIT_ID, Analysis, build_documents
from app.models.events import SSEEvent
from app.services import logger as log_service
from app.services import streaming
from app.services.analysis_store import AnalysisStore
from app.services.logger import logger

SYNTHESIS_FAILED_MESSAGE = "Review generation failed, but perspectives are available."


class SessionState(str, Enum):
    IDLE = "idle"
    STARTED = "started"
    PERSPECTIVE_PROGRESS = "perspective_progress"
    PERSISTED = "persisted"
    SYNTHESIZING = "synthesizing"
    SYNTHESIZED = "synthesized"
    FAILED = "failed"
    DONE = "done"


ALLOWED_TRANSITIONS: dict[SessionState, frozenset[SessionState]] = {
    SessionState.IDLE: frozenset({SessionState.STARTED, SessionState.FAILED}),
    SessionState.STARTED: frozenset(
        {SessionState.PERSPECTIVE_PROGRESS, SessionState.PERSISTED, SessionState.FAILED}
    ),
    SessionState.PERSPECTIVE_PROGRESS: frozenset(
        {SessionState.PERSPECTIVE_PROGRESS, SessionState.PERSISTED, SessionState.FAILED}
    ),
    SessionState.PERSISTED: frozenset(
        {SessionState.SYNTHESIZING, SessionState.DONE, SessionState.FAILED}
    ),
    # Synthesis failure is not fatal, so SYNTHESIZING may go straight to DONE.
    SessionState.SYNTHESIZING: frozenset(
        {SessionState.SYNTHESIZED, SessionState.DONE, SessionState.FAILED}
    ),
    SessionState.SYNTHESIZED: frozenset({SessionState.DONE, SessionState.FAILED}),
    SessionState.FAILED: frozenset({SessionState.DONE}),
    SessionState.DONE: frozenset(),
}


class InvalidTransition(RuntimeError):
    def __init__(self, current: SessionState, target: SessionState):
        super().__init__(f"Invalid session transition: {current.value} -> {target.value}")
        self.current = current
        self.target = target


_END = object()


class AnalysisSession:
    """Streams one line's analysis from start to ``done``.

    Flow:
      1. Emit ``start`` and a progress message
      2. Fan out to every perspective, emitting cumulative ``result-primary``
         events in completion order
      3. Persist the partial analysis once the fan-out settles
      4. Optionally synthesize and emit ``result-synthesis``
      5. Emit ``done``, always, exactly once

    A heartbeat emits ``ping`` events on a fixed interval for the whole
    lifetime of the stream and is cancelled on every exit path.
    """

    def __init__(
        self,
        line_text: str,
        *,
        orchestrator: FanOutOrchestrator,
        reviewer: ReviewerAgent | None,
        store: AnalysisStore,
        synthesis_enabled: bool,
        roles: Iterable[str] = DEFAULT_PERSPECTIVES,
        keepalive_interval: float = 15.0,
        analysis_id: str | None = None,
    ):
        self.analysis = Analysis(
            analysis_id=analysis_id or str(uuid4()),
            line_text=line_text.strip(),
            unit_id=DEFAULT_UNIT_ID,
        )
        self.orchestrator = orchestrator
        self.reviewer = reviewer
        self.store = store
        self.synthesis_enabled = synthesis_enabled and reviewer is not None
        self.roles = list(roles)
        self.keepalive_interval = keepalive_interval
        self.state = SessionState.IDLE
        self.history: list[SessionState] = [SessionState.IDLE]

    @property
    def analysis_id(self) -> str:
        return self.analysis.analysis_id

    def transition(self, target: SessionState) -> None:
        if target not in ALLOWED_TRANSITIONS[self.state]:
            raise InvalidTransition(self.state, target)
        self.state = target
        self.history.append(target)

    async def stream(self) -> AsyncGenerator[SSEEvent, None]:
        queue: asyncio.Queue = asyncio.Queue()
        pipeline = asyncio.create_task(self._pipeline(queue))
        heartbeat = asyncio.create_task(self._heartbeat(queue))
        try:
            while True:
                item = await queue.get()
                if item is _END:
                    break
                yield item
        finally:
            heartbeat.cancel()
            if not pipeline.done():
                pipeline.cancel()
            log_service.log_analysis_step(
                self.analysis_id,
                step_type="session",
                status="closed",
                data={"state": self.state.value},
            )

    async def _heartbeat(self, queue: asyncio.Queue) -> None:
        while True:
            await asyncio.sleep(self.keepalive_interval)
            queue.put_nowait(streaming.ping())

    async def _pipeline(self, queue: asyncio.Queue) -> None:
        emit = queue.put_nowait
        try:
            await self._run(emit)
        except Exception as e:
            logger.error(f"Analysis {self.analysis_id} failed: {e}")
            log_service.log_analysis_step(
                self.analysis_id, step_type="session", status="failed", data={"error": str(e)}
            )
            self.state = SessionState.FAILED
            self.history.append(SessionState.FAILED)
            emit(streaming.error(str(e) or "Analysis failed", fatal=True))
        finally:
            if self.state is not SessionState.DONE:
                self.state = SessionState.DONE
                self.history.append(SessionState.DONE)
            # done and the end marker go in back to back so no ping can follow done
            emit(streaming.done(self.analysis_id))
            emit(_END)

    async def _run(self, emit) -> None:
        analysis = self.analysis
        total = len(self.roles)

        self.transition(SessionState.STARTED)
        log_service.log_analysis_step(analysis.analysis_id, step_type="session", status="started")
        emit(streaming.start(analysis.analysis_id, analysis.unit_id))
        emit(streaming.progress(f"Consulting the council of comedy ({total} perspectives)..."))

        completed = 0
        settled = 0
        async for outcome in self.orchestrator.run_all(analysis, self.roles):
            settled += 1
            self.transition(SessionState.PERSPECTIVE_PROGRESS)
            if outcome.ok:
                completed += 1
                emit(streaming.result_primary(analysis))
                emit(
                    streaming.progress(
                        f"Received {outcome.role} perspective ({completed}/{total})...",
                        role=outcome.role,
                    )
                )
            else:
                reason = outcome.failure.reason if outcome.failure else "unknown"
                emit(
                    streaming.progress(
                        f"Skipped {outcome.role} perspective ({settled}/{total} settled)",
                        role=outcome.role,
                        skipped=True,
                        reason=reason,
                    )
                )

        # run_all persists the partial analysis before it finishes
        self.transition(SessionState.PERSISTED)

        if self.synthesis_enabled and analysis.primary:
            await self._synthesize(emit)

        self.transition(SessionState.DONE)

    async def _synthesize(self, emit) -> None:
        analysis = self.analysis
        self.transition(SessionState.SYNTHESIZING)
        emit(streaming.progress("Synthesizing reviews..."))
        try:
            synthesis = await self.reviewer.synthesize(
                analysis.analysis_id, analysis.line_text, list(analysis.primary)
            )
            analysis.synthesis = synthesis
            await self.store.bulk_store(
                build_documents(
                    analysis,
                    created_at=datetime.now(timezone.utc).isoformat(),
                    include_perspectives=False,
                )
            )
        except Exception as e:
            logger.error(f"Reviewer failed for {analysis.analysis_id}: {e}")
            log_service.log_analysis_step(
                analysis.analysis_id, step_type="synthesis", status="failed", data={"error": str(e)}
            )
            emit(streaming.error(SYNTHESIS_FAILED_MESSAGE))
            return

        self.transition(SessionState.SYNTHESIZED)
        log_service.log_analysis_step(
            analysis.analysis_id,
            step_type="synthesis",
            status="completed",
            data={"divergence_score": synthesis.divergence_score, "risk_level": synthesis.risk_level},
        )
        emit(streaming.result_synthesis(synthesis))
