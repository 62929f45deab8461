"""Per-cluster cycle scheduling.

Each tracked cluster gets its own task running ``Idle -> Running -> (Sleeping |
Failed) -> Running ...`` until the shared stop event is set, at which point it
moves to ``Stopped``. A failing cluster never affects the others. The global
scope runs as one more task alongside the clusters.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from enum import StrEnum
from logging import INFO, WARNING, getLogger
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Mapping

    from shepherd.domain.reconciliation import CycleResult

log = getLogger(__name__)

type CycleRunner = Callable[[asyncio.Event], Awaitable[CycleResult]]


class ClusterState(StrEnum):
    IDLE = "idle"
    RUNNING = "running"
    SLEEPING = "sleeping"
    FAILED = "failed"
    STOPPED = "stopped"


@dataclass(slots=True)
class ClusterTask:
    name: str
    run_cycle: CycleRunner
    state: ClusterState = ClusterState.IDLE
    cycles: int = 0
    last_result: CycleResult | None = None
    last_error: BaseException | None = None
    history: list[ClusterState] = field(default_factory=list["ClusterState"])

    def transition(self, state: ClusterState) -> None:
        log.debug("Cluster %s: %s -> %s", self.name, self.state, state)
        self.state = state
        self.history.append(state)


class ClusterScheduler:
    """Drive one reconciliation cycle per cluster on a fixed interval.

    ``lead`` names a task whose first cycle finishes before any other task
    starts; later cycles run independently.
    """

    def __init__(
        self,
        runners: Mapping[str, CycleRunner],
        *,
        interval: float,
        stop: asyncio.Event | None = None,
        max_cycles: int | None = None,
        lead: str | None = None,
    ) -> None:
        if interval <= 0:
            raise ValueError("Scheduler interval must be positive")
        self.interval = interval
        self.max_cycles = max_cycles
        self.stop = stop or asyncio.Event()
        self.tasks = {name: ClusterTask(name, runner) for name, runner in runners.items()}
        self.lead = lead if lead in self.tasks else None
        self._lead_done = asyncio.Event()

    @property
    def states(self) -> dict[str, ClusterState]:
        return {name: task.state for name, task in self.tasks.items()}

    def request_stop(self) -> None:
        if not self.stop.is_set():
            log.info("Shutdown requested; finishing in-flight work")
        self.stop.set()

    async def run(self) -> dict[str, ClusterTask]:
        await asyncio.gather(*(self._drive(task) for task in self.tasks.values()))
        return self.tasks

    async def _drive(self, task: ClusterTask) -> None:
        if self.lead is not None and task.name != self.lead:
            await self._wait_for_lead()
        while not self.stop.is_set():
            task.transition(ClusterState.RUNNING)
            try:
                result = await task.run_cycle(self.stop)
            except Exception as exc:  # noqa: BLE001
                log.exception("Cluster %s: cycle crashed", task.name)
                task.last_error = exc
                task.transition(ClusterState.FAILED)
            else:
                task.last_result = result
                task.last_error = None
                log.log(INFO if result.clean else WARNING, "%s", result.summary.format())
                task.transition(ClusterState.SLEEPING if result.clean else ClusterState.FAILED)
            task.cycles += 1
            if task.name == self.lead:
                self._lead_done.set()

            if self.max_cycles is not None and task.cycles >= self.max_cycles:
                break
            if await self._sleep():
                break
        if task.name == self.lead:
            self._lead_done.set()
        task.transition(ClusterState.STOPPED)

    async def _wait_for_lead(self) -> None:
        waiters = [
            asyncio.ensure_future(self._lead_done.wait()),
            asyncio.ensure_future(self.stop.wait()),
        ]
        try:
            await asyncio.wait(waiters, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for waiter in waiters:
                waiter.cancel()

    async def _sleep(self) -> bool:
        """Wait for the next tick; ``True`` when the stop event fired instead."""

        try:
            await asyncio.wait_for(self.stop.wait(), timeout=self.interval)
        except TimeoutError:
            return False
        return True
