from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

import structlog
from tenacity import (
    RetryError,
    Retrying,
    retry_if_exception_type,
    retry_if_result,
)
from tenacity.stop import stop_base
from tenacity.wait import wait_base

from deploy_pipeline.core import ClusterReadError, VerificationUnavailable
from deploy_pipeline.pipeline.types import RolloutStatus, WorkloadRef
from deploy_pipeline.stages.deploy.cluster import ClusterClient, WorkloadStatus

from .status import classify

log = structlog.get_logger(__name__)

Clock = Callable[[], float]
Sleep = Callable[[float], None]

# The deadline must leave room for at least this many polls.
MIN_POLLS_PER_DEADLINE = 10


@dataclass(frozen=True, slots=True)
class Transition:
    poll: int
    elapsed_s: float
    status: RolloutStatus

    def to_dict(self) -> dict[str, Any]:
        return {
            "poll": self.poll,
            "elapsed_s": round(self.elapsed_s, 3),
            "status": self.status.value,
        }


@dataclass(slots=True)
class RolloutReport:
    workload: WorkloadRef
    status: RolloutStatus
    polls: int = 0
    reads: int = 0
    read_errors: int = 0
    elapsed_s: float = 0.0
    last_observation: Optional[WorkloadStatus] = None
    transitions: list[Transition] = field(default_factory=list)

    @property
    def healthy(self) -> bool:
        return self.status == RolloutStatus.HEALTHY

    @property
    def failure_reasons(self) -> tuple[str, ...]:
        if self.last_observation is None:
            return ()
        return self.last_observation.failure_reasons

    def to_dict(self) -> dict[str, Any]:
        return {
            "workload": self.workload.to_dict(),
            "status": self.status.value,
            "polls": self.polls,
            "reads": self.reads,
            "read_errors": self.read_errors,
            "elapsed_s": round(self.elapsed_s, 3),
            "last_observation": (
                self.last_observation.to_dict() if self.last_observation else None
            ),
            "transitions": [t.to_dict() for t in self.transitions],
        }


class stop_at_deadline(stop_base):
    """Stop once `clock()` has reached `deadline` (same clock as the verifier)."""

    def __init__(self, clock: Clock, deadline: float) -> None:
        self._clock = clock
        self._deadline = deadline

    def __call__(self, retry_state) -> bool:
        return self._clock() >= self._deadline


class wait_until_deadline(wait_base):
    """Fixed interval, but never sleep past the deadline."""

    def __init__(self, interval: float, clock: Clock, deadline: float) -> None:
        self._interval = interval
        self._clock = clock
        self._deadline = deadline

    def __call__(self, retry_state) -> float:
        return max(0.0, min(self._interval, self._deadline - self._clock()))


class stop_when_set(stop_base):
    def __init__(self, event: threading.Event) -> None:
        self._event = event

    def __call__(self, retry_state) -> bool:
        return self._event.is_set()


def _not_terminal(status: RolloutStatus) -> bool:
    return not status.is_terminal


class RolloutVerifier:
    """
    Poll a workload until its rollout is healthy, failed, cancelled or the
    deadline passes.

    A failed status read is logged and retried on the next tick. Only when
    the deadline passes with zero successful reads does it escalate, as
    VerificationUnavailable.
    """

    def __init__(
        self,
        cluster: ClusterClient,
        *,
        poll_interval_s: float,
        clock: Clock | None = None,
        sleep: Sleep | None = None,
        cancel: threading.Event | None = None,
        on_poll: Callable[[int, Optional[WorkloadStatus], RolloutStatus | None], None]
        | None = None,
        on_transition: Callable[[Transition], None] | None = None,
    ) -> None:
        if poll_interval_s <= 0:
            raise ValueError(f"poll_interval_s must be positive, got {poll_interval_s}")
        self.cluster = cluster
        self.poll_interval_s = float(poll_interval_s)
        self.cancel = cancel or threading.Event()
        self._clock = clock or time.monotonic
        # Waiting on the cancel event makes the pause between polls interruptible.
        self._sleep = sleep or self.cancel.wait
        self._on_poll = on_poll
        self._on_transition = on_transition

    def check_deadline(self, deadline_s: float) -> None:
        if deadline_s < self.poll_interval_s * MIN_POLLS_PER_DEADLINE:
            raise ValueError(
                f"deadline {deadline_s}s leaves fewer than {MIN_POLLS_PER_DEADLINE} "
                f"polls at interval {self.poll_interval_s}s"
            )

    def verify(self, workload: WorkloadRef, deadline_s: float) -> RolloutReport:
        self.check_deadline(deadline_s)

        started = self._clock()
        deadline = started + float(deadline_s)
        report = RolloutReport(workload=workload, status=RolloutStatus.PENDING)
        last_error: list[BaseException] = []

        def _set_status(new: RolloutStatus) -> None:
            if new == report.status and report.transitions:
                return
            t = Transition(
                poll=report.polls, elapsed_s=self._clock() - started, status=new
            )
            report.transitions.append(t)
            report.status = new
            log.info(
                "rollout.transition",
                workload=workload.key,
                status=new.value,
                poll=t.poll,
                elapsed_s=round(t.elapsed_s, 3),
            )
            if self._on_transition is not None:
                self._on_transition(t)

        def _poll() -> RolloutStatus:
            if self.cancel.is_set():
                return RolloutStatus.CANCELLED
            if report.polls and self._clock() >= deadline:
                # Readings at or after the deadline do not count.
                return RolloutStatus.TIMED_OUT

            report.polls += 1
            try:
                observed = self.cluster.read_status(workload)
            except ClusterReadError as exc:
                report.read_errors += 1
                last_error[:] = [exc]
                log.warning(
                    "rollout.read_failed",
                    workload=workload.key,
                    poll=report.polls,
                    error=str(exc),
                )
                if self._on_poll is not None:
                    self._on_poll(report.polls, None, None)
                raise

            report.reads += 1
            report.last_observation = observed
            status = classify(observed)
            _set_status(status)
            if self._on_poll is not None:
                self._on_poll(report.polls, observed, status)
            return status

        retrying = Retrying(
            stop=(
                stop_when_set(self.cancel) | stop_at_deadline(self._clock, deadline)
            ),
            wait=wait_until_deadline(self.poll_interval_s, self._clock, deadline),
            retry=(
                retry_if_exception_type(ClusterReadError)
                | retry_if_result(_not_terminal)
            ),
            sleep=self._sleep,
            reraise=False,
        )

        try:
            final = retrying(_poll)
        except RetryError:
            # A read that overran the deadline, or a cancel during the pause.
            if self.cancel.is_set():
                final = RolloutStatus.CANCELLED
            else:
                final = RolloutStatus.TIMED_OUT

        if final == RolloutStatus.TIMED_OUT and report.reads == 0:
            report.elapsed_s = self._clock() - started
            error = last_error[0] if last_error else None
            raise VerificationUnavailable(workload.key, report.polls, error) from error

        _set_status(final)
        report.elapsed_s = self._clock() - started
        log.info(
            "rollout.finished",
            workload=workload.key,
            status=report.status.value,
            polls=report.polls,
            reads=report.reads,
            read_errors=report.read_errors,
            elapsed_s=round(report.elapsed_s, 3),
        )
        return report
