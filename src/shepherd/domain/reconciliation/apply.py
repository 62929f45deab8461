"""Sequential change application with retries and partial-failure semantics.

Every adapter call is bounded by a per-call timeout. Retriable failures are
retried with exponential backoff plus jitter; anything else is recorded as a
``Failed`` outcome and the next item is attempted. Nothing raises past
:meth:`ChangeApplier.apply`.

A freshly created parent is read back from the target until it answers before
its children are created, bounded by ``ready_timeout``.
"""

from __future__ import annotations

import asyncio
import random
from dataclasses import dataclass, field
from logging import getLogger
from typing import TYPE_CHECKING

from shepherd.domain.errors import (
    CallTimeout,
    NotFound,
    ShepherdError,
    ShutdownRequested,
    SourceError,
)
from shepherd.domain.model import traits_for

from .contracts import Applied, CreateChange, DeleteChange, Failed, Skipped, UpdateChange

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from shepherd.domain.model import Resource, ResourceKind
    from shepherd.domain.ports import StateSource

    from .contracts import ApplyOutcome, ChangeItem, ChangeSet

log = getLogger(__name__)

DEPENDENCY_FAILED = "dependency failed"
SHUTDOWN_REQUESTED = "shutdown requested"


class RetriesExhausted(SourceError):  # noqa: N818
    """The last retriable error once the attempt budget is spent."""

    def __init__(self, last_error: SourceError, attempts: int) -> None:
        super().__init__(
            f"Gave up after {attempts} attempts: {last_error}",
            status_code=last_error.status_code,
        )
        self.last_error = last_error
        self.attempts = attempts


@dataclass(slots=True)
class ChangeApplier:
    attempts: int = 4
    base_delay: float = 0.5
    max_delay: float = 60.0
    jitter_ratio: float = 0.1
    call_timeout: float = 30.0
    ready_timeout: float | None = None
    sleep: Callable[[float], Awaitable[None]] = field(default=asyncio.sleep)
    jitter: Callable[[float, float], float] = field(default=random.uniform)

    def delay_for(self, attempt: int) -> float:
        """Backoff before retry number ``attempt`` (1-based): base * 2**(attempt-1), capped."""

        delay = min(self.base_delay * 2 ** (attempt - 1), self.max_delay)
        if self.jitter_ratio > 0 and delay > 0:
            delay += self.jitter(0.0, delay * self.jitter_ratio)
        return delay

    async def call[T](
        self,
        operation: Callable[[], Awaitable[T]],
        *,
        description: str,
        stop: asyncio.Event | None = None,
    ) -> tuple[T, int]:
        """Run one adapter call under the timeout and retry policy.

        Returns the result and the number of attempts used. Raises the final
        ``SourceError``; exhausted retries surface as :class:`RetriesExhausted`.
        """

        attempt = 1
        while True:
            try:
                async with asyncio.timeout(self.call_timeout):
                    return await operation(), attempt
            except TimeoutError as exc:
                error: SourceError = CallTimeout(
                    f"{description} timed out after {self.call_timeout:g}s"
                )
                error.__cause__ = exc
            except SourceError as exc:
                error = exc

            if not error.retriable:
                raise error
            if attempt >= self.attempts:
                raise RetriesExhausted(error, attempt) from error

            delay = self.delay_for(attempt)
            log.info(
                "%s failed (%s); retry %d/%d in %.2fs",
                description,
                error,
                attempt,
                self.attempts - 1,
                delay,
            )
            if not await self._pause(delay, stop):
                raise ShutdownRequested(f"{description} abandoned during shutdown") from error
            attempt += 1

    async def apply(
        self,
        change_set: ChangeSet,
        target: StateSource,
        *,
        stop: asyncio.Event | None = None,
    ) -> list[ApplyOutcome]:
        outcomes: list[ApplyOutcome] = []
        blocked: set[tuple[ResourceKind, str]] = set()

        items = list(change_set)
        for index, item in enumerate(items):
            if stop is not None and stop.is_set():
                outcomes.append(Skipped(item, SHUTDOWN_REQUESTED))
                continue
            if isinstance(item, CreateChange) and _depends_on(item.resource, blocked):
                log.warning("Skipping create of %s: %s", item.label, DEPENDENCY_FAILED)
                outcomes.append(Skipped(item, DEPENDENCY_FAILED))
                blocked.update(_names_of(item.resource))
                continue

            outcome = await self._apply_item(item, target, stop)
            outcomes.append(outcome)
            if isinstance(outcome, Applied):
                created = outcome.resource
                if (
                    isinstance(item, CreateChange)
                    and created is not None
                    and _has_dependents(created, items[index + 1 :])
                ):
                    await self.await_ready(created, target, stop=stop)
            elif not isinstance(item, DeleteChange):
                blocked.update(_names_of(_resource_of(item)))
        return outcomes

    async def await_ready(
        self,
        resource: Resource,
        target: StateSource,
        *,
        stop: asyncio.Event | None = None,
    ) -> bool:
        """Read ``resource`` back from ``target`` until it answers.

        Not-found and retriable errors are retried with the usual backoff until
        the summed delays would exceed ``ready_timeout`` (``call_timeout`` when
        unset). ``False`` when the resource never answered; its children are
        then created anyway and rely on their own retries.
        """

        budget = self.call_timeout if self.ready_timeout is None else self.ready_timeout
        waited = 0.0
        attempt = 1
        while True:
            try:
                async with asyncio.timeout(self.call_timeout):
                    await target.get(resource.cluster_name, resource.kind, resource.id)
            except (TimeoutError, NotFound):
                pass
            except SourceError as exc:
                if not exc.retriable:
                    log.warning("%s is not readable on %s: %s", resource.label, target.name, exc)
                    return False
            else:
                if attempt > 1:
                    log.info("%s ready on %s after %d checks", resource.label, target.name, attempt)
                return True

            delay = self.delay_for(attempt)
            if waited + delay > budget:
                log.warning("%s not ready on %s after %.2fs", resource.label, target.name, waited)
                return False
            if not await self._pause(delay, stop):
                return False
            waited += delay
            attempt += 1

    async def _apply_item(
        self, item: ChangeItem, target: StateSource, stop: asyncio.Event | None
    ) -> ApplyOutcome:
        description = f"{item.operation} {item.label} on {target.name}"
        try:
            match item:
                case CreateChange(resource=resource):
                    created, attempts = await self.call(
                        lambda: target.create(resource), description=description, stop=stop
                    )
                    return Applied(item, created, attempts)
                case UpdateChange(observed=observed, patch=patch):
                    updated, attempts = await self.call(
                        lambda: target.update(observed, patch), description=description, stop=stop
                    )
                    return Applied(item, updated, attempts)
                case DeleteChange(resource=resource):
                    try:
                        _, attempts = await self.call(
                            lambda: target.delete(resource), description=description, stop=stop
                        )
                    except NotFound:
                        log.debug("%s already absent on %s", item.label, target.name)
                        attempts = 1
                    return Applied(item, None, attempts)
        except RetriesExhausted as exc:
            log.warning("%s failed: %s", description, exc)
            return Failed(item, exc.last_error, retriable=False, attempts=exc.attempts)
        except ShutdownRequested as exc:
            log.warning("%s interrupted: %s", description, exc)
            return Failed(item, exc, retriable=True)
        except ShepherdError as exc:
            log.warning("%s failed: %s", description, exc)
            return Failed(item, exc, retriable=False)

    async def _pause(self, delay: float, stop: asyncio.Event | None) -> bool:
        """Sleep for ``delay``; ``False`` when shutdown was requested meanwhile."""

        if stop is None:
            await self.sleep(delay)
            return True
        if stop.is_set():
            return False
        sleeper = asyncio.ensure_future(self.sleep(delay))
        waiter = asyncio.ensure_future(stop.wait())
        try:
            await asyncio.wait({sleeper, waiter}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in (sleeper, waiter):
                task.cancel()
        return not stop.is_set()


def _resource_of(item: ChangeItem) -> Resource:
    if isinstance(item, UpdateChange):
        return item.observed
    return item.resource


def _names_of(resource: Resource) -> set[tuple[ResourceKind, str]]:
    """Every name a child may use to refer to ``resource``: its id and natural key parts."""

    names = {(resource.kind, resource.id)} if resource.id else set()
    key = traits_for(resource.kind).natural_key_of(resource)
    for part in key or ():
        if isinstance(part, str) and part:
            names.add((resource.kind, part))
    return names


def _depends_on(resource: Resource, blocked: set[tuple[ResourceKind, str]]) -> bool:
    return any((ref.kind, ref.name) in blocked for ref in resource.parent_refs)


def _has_dependents(resource: Resource, later: list[ChangeItem]) -> bool:
    names = _names_of(resource)
    return any(
        isinstance(item, CreateChange) and _depends_on(item.resource, names) for item in later
    )
