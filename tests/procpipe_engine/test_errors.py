"""Unit tests for pipeline error types."""

from __future__ import annotations

import signal

import pytest

from procpipe import (
    CancelledError,
    ConstructionError,
    InvalidCommandLineError,
    LinkConflictError,
    MalformedInputError,
    PipeError,
    StageFailureError,
    StartFailureError,
)


@pytest.mark.unit
class TestErrorHierarchy:
    @pytest.mark.parametrize(
        "err",
        [
            MalformedInputError("bad"),
            StartFailureError(0, "x"),
            StageFailureError("x", 1),
            CancelledError(),
        ],
    )
    def test_runtime_errors_are_pipe_errors(self, err):
        assert isinstance(err, PipeError)

    @pytest.mark.parametrize("cls", [LinkConflictError, InvalidCommandLineError])
    def test_construction_errors_are_not_pipe_errors(self, cls):
        err = cls("bug")
        assert isinstance(err, ConstructionError)
        assert not isinstance(err, PipeError)

    def test_malformed_input_is_value_error(self):
        assert isinstance(MalformedInputError("bad", "line"), ValueError)


@pytest.mark.unit
class TestStartFailureError:
    def test_fields(self):
        err = StartFailureError(2, "prog")
        assert err.stage == 2
        assert err.program == "prog"
        assert str(err) == "unable to start stage 2 (prog)"

    def test_message_includes_cause(self):
        try:
            try:
                raise FileNotFoundError("no such file")
            except FileNotFoundError as cause:
                raise StartFailureError(1, "prog") from cause
        except StartFailureError as err:
            assert "no such file" in str(err)


@pytest.mark.unit
class TestStageFailureError:
    def test_exit_status_message(self):
        err = StageFailureError("grep", 1, stage=2)
        assert str(err) == "stage 2 (grep) exited with status 1"
        assert err.signal_name is None

    def test_without_stage(self):
        assert str(StageFailureError("grep", 1)) == "grep exited with status 1"

    def test_signal_death(self):
        err = StageFailureError("sleep", -signal.SIGTERM, cancelled=True)
        assert err.signal_name == "SIGTERM"
        assert str(err) == "sleep terminated by SIGTERM after cancellation"

    def test_copy_failure_message(self):
        assert "copy" in str(StageFailureError("cat", 0))

    def test_stage_assignable(self):
        err = StageFailureError("x", 1)
        err.stage = 0
        assert str(err).startswith("stage 0 (x)")
