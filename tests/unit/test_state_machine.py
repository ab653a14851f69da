"""Unit tests for the run status state machine."""

from __future__ import annotations

import pytest

from pipeline_orchestrator.domain.state_machine import (
    IllegalTransitionError,
    RunStatus,
    transition,
)


@pytest.mark.parametrize(
    ("current", "to"),
    [
        (RunStatus.PENDING, RunStatus.RUNNING),
        (RunStatus.PENDING, RunStatus.FAILED),
        (RunStatus.RUNNING, RunStatus.RUNNING),
        (RunStatus.RUNNING, RunStatus.COMPLETED),
        (RunStatus.RUNNING, RunStatus.FAILED),
    ],
)
def test_allowed_transitions(current: RunStatus, to: RunStatus) -> None:
    assert transition(current=current, to=to) is to


@pytest.mark.parametrize(
    ("current", "to"),
    [
        (RunStatus.PENDING, RunStatus.COMPLETED),
        (RunStatus.COMPLETED, RunStatus.RUNNING),
        (RunStatus.COMPLETED, RunStatus.FAILED),
        (RunStatus.FAILED, RunStatus.RUNNING),
        (RunStatus.RUNNING, RunStatus.PENDING),
    ],
)
def test_transition_rejects_illegal_transitions(current: RunStatus, to: RunStatus) -> None:
    with pytest.raises(IllegalTransitionError):
        transition(current=current, to=to)


def test_terminal_statuses() -> None:
    assert RunStatus.COMPLETED.is_terminal
    assert RunStatus.FAILED.is_terminal
    assert not RunStatus.PENDING.is_terminal
    assert not RunStatus.RUNNING.is_terminal
    assert RunStatus("running") is RunStatus.RUNNING
