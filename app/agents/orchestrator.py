from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import AsyncGenerator, Iterable

from app.agents.perspective import DEFAULT_PERSPECTIVES, PerspectiveWorker
from app.models.analysis import Analysis, PerspectiveFailure, PerspectiveOutcome, build_documents
from app.services import logger as log_service
from app.services.analysis_store import AnalysisStore
from app.services.logger import logger


class FanOutOrchestrator:
    """Runs every perspective against one line concurrently.

    Flow:
      1. Start one worker task per role, all at once
      2. Yield each outcome the moment its task finishes (completion order)
      3. Append successes to the analysis
      4. Once every task has settled, persist the partial analysis

    A failing worker is reported as a skipped outcome; siblings keep running.
    """

    def __init__(self, worker: PerspectiveWorker, store: AnalysisStore):
        self.worker = worker
        self.store = store
        self._tasks: set[asyncio.Task] = set()

    async def _run_one(self, role: str, analysis: Analysis) -> PerspectiveOutcome:
        try:
            return await self.worker.run(role, analysis.line_text, analysis.analysis_id)
        except Exception as e:
            logger.error(f"Perspective {role} crashed: {e}")
            return PerspectiveOutcome(role=role, failure=PerspectiveFailure(role=role, reason=str(e)))

    async def run_all(
        self,
        analysis: Analysis,
        roles: Iterable[str] = DEFAULT_PERSPECTIVES,
    ) -> AsyncGenerator[PerspectiveOutcome, None]:
        roles = list(roles)
        tasks = []
        for role in roles:
            task = asyncio.create_task(self._run_one(role, analysis))
            # Keep a strong reference so abandoned tasks still run to completion.
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
            tasks.append(task)

        for next_done in asyncio.as_completed(tasks):
            outcome = await next_done
            analysis.add_outcome(outcome)
            yield outcome

        logger.info(
            f"Fan-out complete for {analysis.analysis_id}: "
            f"{len(analysis.primary)}/{len(roles)} perspectives"
        )
        await self.persist_snapshot(analysis)

    async def persist_snapshot(self, analysis: Analysis) -> None:
        docs = build_documents(
            analysis,
            created_at=datetime.now(timezone.utc).isoformat(),
            include_synthesis=False,
        )
        stored = await self.store.bulk_store(docs)
        log_service.log_analysis_step(
            analysis.analysis_id,
            step_type="perspectives_persisted",
            status="completed",
            data={"documents": stored},
        )
