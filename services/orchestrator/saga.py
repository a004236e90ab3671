import asyncio
from enum import Enum

import structlog

from shared.observability import phleb_saga_compensation_total

logger = structlog.get_logger(__name__)


class SagaState(str, Enum):
    PENDING = "pending"
    HOLDING = "holding"
    COMMITTED = "committed"
    RELEASING = "releasing"
    RELEASED = "released"
    FAILED = "failed"


_TRANSITIONS = {
    SagaState.PENDING: {SagaState.HOLDING, SagaState.COMMITTED, SagaState.FAILED},
    SagaState.HOLDING: {SagaState.COMMITTED, SagaState.RELEASING},
    SagaState.RELEASING: {SagaState.RELEASED, SagaState.FAILED},
}


class SagaStep:
    def __init__(self, name, action, compensation=None, soft=None, holds_funds=False):
        self.name = name
        self.action = action
        self.compensation = compensation
        # soft(ctx, exc) -> True absorbs the failure and the saga carries on
        self.soft = soft
        self.holds_funds = holds_funds


class SagaOrchestrator:
    def __init__(self, name: str = "saga"):
        self.name = name
        self.steps = []
        self.state = SagaState.PENDING
        self.soft_failures = {}

    def add_step(self, name: str, action, compensation=None, soft=None, holds_funds=False):
        """Builder pattern to add a step and its rollback compensation."""
        self.steps.append(SagaStep(name, action, compensation, soft, holds_funds))
        return self

    def _transition(self, new_state: SagaState) -> None:
        if new_state not in _TRANSITIONS.get(self.state, set()):
            raise RuntimeError(f"Illegal saga transition {self.state.value} -> {new_state.value}")
        logger.debug("saga_transition", saga=self.name, from_state=self.state.value, to_state=new_state.value)
        self.state = new_state

    async def execute(self, ctx: dict):
        """Executes steps sequentially. Triggers rollback on any hard failure or cancellation.

        A failing step is compensated together with the steps before it, so a
        compensation must cope with its action having stopped half way.
        """
        started = []
        step = None
        try:
            for step in self.steps:
                started.append(step)
                try:
                    await step.action(ctx)
                except Exception as exc:
                    if step.soft is not None and step.soft(ctx, exc):
                        logger.warning("saga_step_absorbed", saga=self.name, step=step.name, error=str(exc))
                        self.soft_failures[step.name] = exc
                        continue
                    raise
                if step.holds_funds and self.state == SagaState.PENDING:
                    self._transition(SagaState.HOLDING)
            self._transition(SagaState.COMMITTED)
            return True
        except (Exception, asyncio.CancelledError) as e:
            logger.error(
                "saga_step_failed",
                saga=self.name,
                step=step.name if step else None,
                error=str(e) or type(e).__name__,
            )
            await self._rollback(started, ctx)
            raise

    async def _rollback(self, started: list, ctx: dict):
        """Executes compensations in reverse order. Wraps each in a try/except."""
        holding = self.state == SagaState.HOLDING
        if holding:
            self._transition(SagaState.RELEASING)
        logger.info("saga_rollback_started", saga=self.name, steps=len(started))

        clean = True
        for step in reversed(started):
            if not step.compensation:
                continue
            try:
                await step.compensation(ctx)
                logger.info("saga_compensation_succeeded", saga=self.name, step=step.name)
                phleb_saga_compensation_total.labels(step_name=step.name, outcome="success").inc()
            except Exception as ce:
                # A failing compensation MUST NOT block other compensations
                clean = False
                phleb_saga_compensation_total.labels(step_name=step.name, outcome="failed").inc()
                logger.critical(
                    "saga_compensation_failed",
                    saga=self.name,
                    step=step.name,
                    error=str(ce),
                    detail="Manual intervention may be required",
                )

        if holding:
            self._transition(SagaState.RELEASED if clean else SagaState.FAILED)
        else:
            self._transition(SagaState.FAILED)
