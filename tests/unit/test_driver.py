"""Unit tests for prompt-based readiness tracking in ReplProcess."""

from types import SimpleNamespace

import pytest

from evalqueue.protocol.messages import ReadyStatus
from evalqueue.protocol.payload import BEGIN_SENTINEL, END_SENTINEL
from evalqueue.target.constants import PS1, PS2
from evalqueue.target.driver import ReplProcess, ReplProcessDriver


def _process(on_output=None) -> ReplProcess:
    process = ReplProcess("s", on_output=on_output)
    # Stand-in for a running subprocess
    process._process = SimpleNamespace(returncode=None, pid=1234)  # type: ignore[assignment]
    return process


@pytest.mark.unit
class TestReadiness:
    """Test READY/BUSY derivation from echoed prompts."""

    def test_not_started_is_dead(self):
        assert ReplProcess("s").ready_status() == ReadyStatus.DEAD

    def test_exited_is_dead(self):
        process = _process()
        process._process.returncode = 0
        assert process.ready_status() == ReadyStatus.DEAD

    def test_ready_on_primary_prompt(self):
        process = _process()
        assert process.ready_status() == ReadyStatus.BUSY
        process._handle_output(PS1)
        assert process.ready_status() == ReadyStatus.READY

    def test_busy_until_every_line_answered(self):
        process = _process()
        process._handle_output(PS1)
        lines = [f"{BEGIN_SENTINEL} 1a2b3c4d", "run()", END_SENTINEL]
        process._unanswered.extend(lines)

        process._handle_output(f"{lines[0]}\n{PS1}")
        assert process.ready_status() == ReadyStatus.BUSY
        process._handle_output(f"{lines[1]}\nsome output\n")
        assert process.ready_status() == ReadyStatus.BUSY
        process._handle_output(f"{PS1}{lines[2]}\n")
        assert process.ready_status() == ReadyStatus.BUSY
        process._handle_output(PS1)
        assert process.ready_status() == ReadyStatus.READY

    def test_prompt_split_across_chunks(self):
        process = _process()
        process._unanswered.append("x = 1")
        process._handle_output(">")
        process._handle_output(">> x = ")
        process._handle_output("1\n>>")
        assert process.ready_status() == ReadyStatus.BUSY
        process._handle_output("> ")
        assert process.ready_status() == ReadyStatus.READY

    def test_continuation_prompt_is_not_ready(self):
        process = _process()
        process._handle_output(PS1)
        process._unanswered.append("def f():")
        process._handle_output(f"def f():\n{PS2}")
        assert process.ready_status() == ReadyStatus.BUSY

    def test_output_without_newline_before_prompt(self):
        process = _process()
        process._handle_output(PS1)
        process._unanswered.append("print('x', end='')")
        process._handle_output(f"print('x', end='')\nx{PS1}")
        assert process.ready_status() == ReadyStatus.READY

    def test_stray_output_shares_line_with_next_echo(self):
        process = _process()
        process._handle_output(PS1)
        lines = [f"{BEGIN_SENTINEL} 1a2b3c4d", "run()", END_SENTINEL]
        process._unanswered.extend(lines)

        process._handle_output(f"{lines[0]}\n{PS1}{lines[1]}\n")
        process._handle_output(f"x{PS1}{lines[2]}\n{PS1}")
        assert list(process._unanswered) == []
        assert process.ready_status() == ReadyStatus.READY


@pytest.mark.unit
class TestOutputRouting:
    """Test that chunks reach the callback with suppression flags."""

    def test_callback_receives_flagged_chunks(self):
        seen = []
        process = _process(on_output=lambda session, chunk: seen.append((session, chunk)))
        process._handle_output(f"{PS1}{BEGIN_SENTINEL} abc\n")
        process._handle_output("plain\n")

        assert [s for s, _ in seen] == ["s", "s"]
        assert seen[0][1].suppress
        assert seen[1][1].suppress
        assert process.output_filter.suppress_active

    def test_callback_errors_are_contained(self):
        def explode(session, chunk):
            raise RuntimeError("boom")

        process = _process(on_output=explode)
        process._handle_output(PS1)
        assert process.ready_status() == ReadyStatus.READY


@pytest.mark.unit
def test_driver_without_sessions():
    driver = ReplProcessDriver()
    assert driver.get("s") is None
    assert driver.ready_status("s") == ReadyStatus.DEAD
