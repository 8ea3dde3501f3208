"""Tests for core subprocess utilities."""

import subprocess
import sys
import threading
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from encodegate.core.subprocess_utils import (
    ProcessOutcome,
    ProcessRegistry,
    StreamingProcessRunner,
    run_command,
)

PY = sys.executable


def _fake_process(pid: int = 4242, running: bool = True) -> MagicMock:
    process = MagicMock(spec=subprocess.Popen)
    process.pid = pid
    process.poll.return_value = None if running else 0
    return process


class TestProcessRegistry:
    def test_add_and_discard(self):
        registry = ProcessRegistry()
        process = _fake_process()
        registry.add(process)
        assert len(registry) == 1
        registry.discard(process)
        assert len(registry) == 0

    def test_encoder_pid_tracks_running_encoder(self):
        registry = ProcessRegistry()
        encoder = _fake_process(pid=99)
        registry.add(_fake_process(pid=1))
        registry.add(encoder, is_encoder=True)
        assert registry.encoder_pid == 99

        encoder.poll.return_value = 0
        assert registry.encoder_pid is None

    def test_discard_encoder_clears_pid(self):
        registry = ProcessRegistry()
        encoder = _fake_process(pid=99)
        registry.add(encoder, is_encoder=True)
        registry.discard(encoder)
        assert registry.encoder_pid is None

    def test_kill_all_skips_finished(self):
        registry = ProcessRegistry()
        live = _fake_process(pid=1)
        done = _fake_process(pid=2, running=False)
        registry.add(live)
        registry.add(done)

        assert registry.kill_all() == 1
        live.kill.assert_called_once()
        done.kill.assert_not_called()
        assert len(registry) == 0

    def test_kill_all_tolerates_os_error(self):
        registry = ProcessRegistry()
        process = _fake_process()
        process.kill.side_effect = ProcessLookupError("gone")
        registry.add(process)
        assert registry.kill_all() == 0

    def test_kill_all_real_process(self):
        registry = ProcessRegistry()
        process = subprocess.Popen([PY, "-c", "import time; time.sleep(30)"])
        registry.add(process)
        assert registry.kill_all() == 1
        assert process.poll() is not None


class TestRunCommand:
    def test_captures_stdout_and_returncode(self):
        stdout, stderr, returncode = run_command([PY, "-c", "print('hello')"])
        assert stdout.strip() == "hello"
        assert returncode == 0

    def test_captures_stderr(self):
        _, stderr, returncode = run_command(
            [PY, "-c", "import sys; sys.stderr.write('bad'); sys.exit(3)"]
        )
        assert stderr == "bad"
        assert returncode == 3

    def test_path_args_converted(self, temp_dir: Path):
        stdout, _, _ = run_command(
            [PY, "-c", "import sys; print(sys.argv[1])", temp_dir]
        )
        assert stdout.strip() == str(temp_dir)

    def test_timeout_kills_and_raises(self):
        registry = ProcessRegistry()
        with pytest.raises(subprocess.TimeoutExpired):
            run_command(
                [PY, "-c", "import time; time.sleep(30)"],
                timeout=0.5,
                registry=registry,
            )
        assert len(registry) == 0

    def test_process_registered_while_running(self):
        registry = MagicMock(spec=ProcessRegistry)
        run_command([PY, "-c", "pass"], registry=registry)
        process = registry.add.call_args[0][0]
        registry.discard.assert_called_once_with(process)


class TestProcessOutcome:
    def test_success(self):
        assert ProcessOutcome(returncode=0).success
        assert not ProcessOutcome(returncode=1).success
        assert not ProcessOutcome(returncode=0, timed_out=True).success
        assert not ProcessOutcome(returncode=0, cancelled=True).success

    def test_tail_text(self):
        outcome = ProcessOutcome(returncode=1, stderr_tail=("a\n", "b\n", "c\n"))
        assert outcome.tail_text(2) == "b\nc"


PROGRESS_SCRIPT = """
import sys
for i in range(1, 4):
    sys.stderr.write(
        f"frame={i * 24} fps=24.0 q=28.0 size=1024kB "
        f"time=00:00:0{i}.00 bitrate=2000.0kbits/s speed=1.0x\\n"
    )
sys.stderr.write("done\\n")
"""


class TestStreamingProcessRunner:
    def test_streams_lines_and_progress(self):
        lines: list[str] = []
        progress = []
        outcome = StreamingProcessRunner().run(
            [PY, "-c", PROGRESS_SCRIPT],
            "test encode",
            timeout=30,
            line_callback=lines.append,
            progress_callback=progress.append,
        )
        assert outcome.success
        assert len(lines) == 4
        assert len(progress) == 3
        assert progress[-1].frame == 72
        assert outcome.metrics.sample_count == 3
        assert outcome.stderr_tail[-1] == "done\n"

    def test_nonzero_exit(self):
        outcome = StreamingProcessRunner().run(
            [PY, "-c", "import sys; sys.stderr.write('oops\\n'); sys.exit(2)"],
            "failing tool",
            timeout=30,
        )
        assert outcome.returncode == 2
        assert not outcome.success
        assert outcome.tail_text() == "oops"

    def test_timeout_kills_process(self):
        outcome = StreamingProcessRunner().run(
            [PY, "-c", "import time; time.sleep(30)"], "slow tool", timeout=1
        )
        assert outcome.timed_out
        assert outcome.returncode == -1

    def test_cancellation_kills_process(self):
        cancel = threading.Event()
        registry = ProcessRegistry()
        runner = StreamingProcessRunner(registry=registry, cancel_event=cancel)
        timer = threading.Timer(0.5, cancel.set)
        timer.start()
        try:
            outcome = runner.run(
                [PY, "-c", "import time; time.sleep(30)"],
                "encode",
                timeout=30,
                is_encoder=True,
            )
        finally:
            timer.cancel()
        assert outcome.cancelled
        assert outcome.returncode == -1
        assert len(registry) == 0
        assert registry.encoder_pid is None

    def test_progress_callback_errors_are_logged(self, caplog):
        def broken(_progress):
            raise RuntimeError("display gone")

        outcome = StreamingProcessRunner().run(
            [PY, "-c", PROGRESS_SCRIPT],
            "encode",
            timeout=30,
            progress_callback=broken,
        )
        assert outcome.success
        assert "Progress callback error" in caplog.text
