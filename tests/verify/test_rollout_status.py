from __future__ import annotations

import pytest
from fakes import crashing, healthy, pending, progressing

from deploy_pipeline.pipeline.types import RolloutStatus
from deploy_pipeline.stages.deploy import WorkloadStatus
from deploy_pipeline.stages.verify import classify


@pytest.mark.parametrize(
    ("observed", "expected"),
    [
        (pending(), RolloutStatus.PENDING),
        (progressing(), RolloutStatus.PROGRESSING),
        (healthy(), RolloutStatus.HEALTHY),
        (crashing(), RolloutStatus.FAILED),
    ],
)
def test_classify_basic_states(observed: WorkloadStatus, expected: RolloutStatus) -> None:
    assert classify(observed) == expected


def test_old_ready_replicas_do_not_count_as_healthy() -> None:
    # All replicas ready, but one still runs the previous template.
    observed = WorkloadStatus(
        generation=3,
        observed_generation=3,
        desired_replicas=2,
        replicas=3,
        updated_replicas=2,
        ready_replicas=2,
        available_replicas=2,
    )
    assert classify(observed) == RolloutStatus.PROGRESSING


def test_stale_observed_generation_is_pending_even_if_counts_match() -> None:
    observed = WorkloadStatus(
        generation=4,
        observed_generation=3,
        desired_replicas=1,
        replicas=1,
        updated_replicas=1,
        ready_replicas=1,
    )
    assert classify(observed) == RolloutStatus.PENDING


def test_failure_reasons_win_over_counts() -> None:
    observed = WorkloadStatus(
        generation=1,
        observed_generation=1,
        desired_replicas=1,
        replicas=1,
        updated_replicas=1,
        ready_replicas=1,
        condition_failures=("ProgressDeadlineExceeded",),
    )
    assert classify(observed) == RolloutStatus.FAILED


def test_conditions_of_the_previous_generation_are_ignored() -> None:
    # Redeploy after a failed rollout: the controller has not seen the new
    # generation yet, so the old ProgressDeadlineExceeded is still reported.
    observed = WorkloadStatus(
        generation=5,
        observed_generation=4,
        desired_replicas=2,
        replicas=2,
        ready_replicas=0,
        condition_failures=("ProgressDeadlineExceeded",),
    )
    assert observed.failure_reasons == ()
    assert classify(observed) == RolloutStatus.PENDING


def test_pod_failures_count_before_the_generation_is_observed() -> None:
    observed = WorkloadStatus(
        generation=5,
        observed_generation=4,
        desired_replicas=2,
        updated_replicas=1,
        pod_failures=("web-new/web: ImagePullBackOff",),
        condition_failures=("ProgressDeadlineExceeded",),
    )
    assert observed.failure_reasons == ("web-new/web: ImagePullBackOff",)
    assert classify(observed) == RolloutStatus.FAILED


def test_scaled_to_zero_is_healthy() -> None:
    observed = WorkloadStatus(generation=2, observed_generation=2, desired_replicas=0)
    assert classify(observed) == RolloutStatus.HEALTHY


def test_terminal_states_and_reasons() -> None:
    assert not RolloutStatus.PENDING.is_terminal
    assert not RolloutStatus.PROGRESSING.is_terminal
    assert all(
        s.is_terminal
        for s in (
            RolloutStatus.HEALTHY,
            RolloutStatus.TIMED_OUT,
            RolloutStatus.FAILED,
            RolloutStatus.CANCELLED,
        )
    )
    assert RolloutStatus.TIMED_OUT.reason == "TimedOut"
    assert RolloutStatus.CANCELLED.reason == "Cancelled"
