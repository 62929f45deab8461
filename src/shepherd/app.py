"""Application orchestration entry points."""

from __future__ import annotations

import asyncio
import signal
from dataclasses import dataclass, field
from functools import partial
from logging import getLogger
from typing import TYPE_CHECKING

from shepherd.adapters.git import GitPythonHistory
from shepherd.adapters.http_resilience import ResilientClient
from shepherd.adapters.rancher import RancherLiveSource
from shepherd.adapters.repository import JsonSnapshotStore, RepoSource
from shepherd.domain.model import CLUSTER_KINDS, GLOBAL_KINDS, GLOBAL_SCOPE, SyncDirection
from shepherd.domain.reconciliation import (
    ChangeApplier,
    CyclePersister,
    DiffPlanner,
    ReconciliationEngine,
)
from shepherd.domain.scheduler import ClusterScheduler

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Sequence
    from pathlib import Path

    from shepherd.config import DaemonConfig, ResilienceConfig
    from shepherd.domain.reconciliation import CycleResult
    from shepherd.domain.scheduler import ClusterTask, CycleRunner

log = getLogger(__name__)

type ClientFactory = Callable[[ResilienceConfig], ResilientClient]


@dataclass(slots=True)
class Runtime:
    """Adapters and one engine per scope, built once at startup.

    The global scope owns the server-wide role templates; each tracked cluster
    owns its projects and bindings.
    """

    config: DaemonConfig
    history: GitPythonHistory
    repo: RepoSource
    live: RancherLiveSource
    snapshots: JsonSnapshotStore
    engines: dict[str, ReconciliationEngine] = field(
        default_factory=dict["str", "ReconciliationEngine"]
    )

    async def aclose(self) -> None:
        for engine in self.engines.values():
            engine.close()
        await self.live.aclose()


def snapshot_directory(history: GitPythonHistory) -> Path:
    return history.git_dir / "shepherd" / "snapshots"


def build_runtime(
    config: DaemonConfig,
    *,
    history: GitPythonHistory | None = None,
    client_factory: ClientFactory | None = None,
    direction: SyncDirection | None = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> Runtime:
    """Wire adapters and engines for the global scope and every tracked cluster.

    ``direction`` overrides the configured per-cluster direction (bootstrap
    always captures).
    """

    effective_history = history or GitPythonHistory.open(
        config.repo_path,
        remote_url=config.remote_url,
        branch=config.branch,
        credential=config.git_credential,
        timeout=config.retry.call_timeout_seconds,
    )
    repo = RepoSource(root=effective_history.working_tree, file_format=config.file_format)
    snapshots = JsonSnapshotStore(snapshot_directory(effective_history))
    live = RancherLiveSource(
        resilience=config.resilience(), client_factory=client_factory or ResilientClient
    )
    applier = ChangeApplier(
        attempts=config.retry.attempts,
        base_delay=config.retry.base_delay,
        max_delay=config.retry.max_delay,
        jitter_ratio=config.retry.jitter_ratio,
        call_timeout=config.retry.call_timeout_seconds,
        sleep=sleep,
    )
    persister = CyclePersister(history=effective_history, store=snapshots, locator=repo)
    planner = DiffPlanner(natural_keys=dict(config.natural_keys))

    runtime = Runtime(
        config=config,
        history=effective_history,
        repo=repo,
        live=live,
        snapshots=snapshots,
    )
    for scope in config.scopes:
        runtime.engines[scope.name] = ReconciliationEngine(
            cluster_name=scope.name,
            repo=repo,
            live=live,
            history=effective_history,
            snapshots=snapshots,
            applier=applier,
            persister=persister,
            planner=planner,
            direction=direction or scope.direction,
            prune=scope.prune,
            kinds=GLOBAL_KINDS if scope.name == GLOBAL_SCOPE else CLUSTER_KINDS,
        )
    return runtime


async def run_daemon(
    config: DaemonConfig,
    *,
    runtime: Runtime | None = None,
    stop: asyncio.Event | None = None,
) -> dict[str, ClusterTask]:
    """Reconcile every tracked cluster on the configured interval until SIGINT/SIGTERM."""

    effective_runtime = runtime or build_runtime(config)
    scheduler = ClusterScheduler(
        {name: engine.run_cycle for name, engine in effective_runtime.engines.items()},
        interval=config.tick_interval_seconds,
        stop=stop,
        lead=GLOBAL_SCOPE,
    )
    installed = _install_signal_handlers(scheduler)
    log.info(
        "Starting shepherd for %s every %gs",
        ", ".join(effective_runtime.engines),
        config.tick_interval_seconds,
    )
    try:
        return await scheduler.run()
    finally:
        _remove_signal_handlers(installed)
        await effective_runtime.aclose()
        log.info("Stopped")


async def run_once(
    config: DaemonConfig,
    *,
    runtime: Runtime | None = None,
    clusters: Sequence[str] | None = None,
    dry_run: bool = False,
) -> list[CycleResult]:
    """Run a single cycle for the selected clusters (all by default)."""

    selected = [config.cluster(name).name for name in clusters] if clusters else None
    effective_runtime = runtime or build_runtime(config)
    if selected is None:
        selected = list(effective_runtime.engines)
    runners: dict[str, CycleRunner] = {
        name: partial(effective_runtime.engines[name].run_cycle, dry_run=dry_run)
        for name in selected
    }
    scheduler = ClusterScheduler(
        runners, interval=config.tick_interval_seconds, max_cycles=1, lead=GLOBAL_SCOPE
    )
    try:
        tasks = await scheduler.run()
    finally:
        await effective_runtime.aclose()
    return [task.last_result for task in tasks.values() if task.last_result is not None]


async def bootstrap(
    config: DaemonConfig,
    *,
    client_factory: ClientFactory | None = None,
) -> list[CycleResult]:
    """Initialise the repository and capture the live state of every tracked cluster."""

    history = GitPythonHistory.initialize(
        config.repo_path,
        remote_url=config.remote_url,
        branch=config.branch,
        credential=config.git_credential,
        timeout=config.retry.call_timeout_seconds,
    )
    if history.has_remote:
        await history.push()
    runtime = build_runtime(
        config,
        history=history,
        client_factory=client_factory,
        direction=SyncDirection.CAPTURE,
    )
    results = await run_once(config, runtime=runtime)
    log.info("Bootstrap finished at revision %s", await history.current_revision())
    return results


def _install_signal_handlers(scheduler: ClusterScheduler) -> list[signal.Signals]:
    loop = asyncio.get_running_loop()
    installed: list[signal.Signals] = []
    for signum in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(signum, scheduler.request_stop)
        except (NotImplementedError, RuntimeError, ValueError):
            # not on the main thread, or a platform without signal support in the loop
            continue
        installed.append(signum)
    return installed


def _remove_signal_handlers(installed: list[signal.Signals]) -> None:
    loop = asyncio.get_running_loop()
    for signum in installed:
        loop.remove_signal_handler(signum)
