"""Guarded subprocess execution used by git automation."""

from __future__ import annotations

import subprocess
import sys

import pytest

from roadmap_engine.core.safe_subprocess import (
    CommandBlockedError,
    CommandTimeoutError,
    SubprocessError,
    is_command_safe,
    safe_run,
)


@pytest.mark.parametrize(
    "command",
    [
        ["git", "status", "--porcelain"],
        ["git", "commit", "-m", "roadmap: complete milestone Launch"],
        "git rev-parse HEAD",
        ["git", "log", "--format=%s", "-1"],
        ["git", "commit", "-m", "remove mkfs step; rm -rf / cleanup"],
        'git commit -m "drop sudo from chmod -R 777 / docs"',
    ],
)
def test_git_commands_allowed(command):
    assert is_command_safe(command) == (True, "")


@pytest.mark.parametrize(
    "command, fragment",
    [
        (["rm", "-rf", "/"], "blocked pattern: rm -rf /"),
        (["/bin/rm", "-rf", "/", "--no-preserve-root"], "blocked pattern: rm -rf /"),
        ("mkfs.ext4 /dev/sda1", "blocked pattern: mkfs"),
        (["dd", "if=/dev/zero", "of=/dev/sda"], "blocked pattern: dd if=/dev/zero"),
        ("sudo git push", "dangerous prefix: sudo"),
        (["doas", "git", "gc"], "dangerous prefix: doas"),
    ],
)
def test_denied_commands_report_reason(command, fragment):
    allowed, reason = is_command_safe(command)
    assert allowed is False
    assert fragment in reason


def test_prefix_must_be_whole_word():
    assert is_command_safe(["sudoku-solver"])[0] is True


class TestSafeRun:
    def test_stdout_is_captured_as_text(self, tmp_path):
        completed = safe_run([sys.executable, "-c", "import os; print(os.getcwd())"], cwd=tmp_path)
        assert completed.returncode == 0
        assert completed.stdout.strip() == str(tmp_path)

    def test_nonzero_exit_is_returned_without_check(self):
        completed = safe_run([sys.executable, "-c", "import sys; sys.exit(3)"])
        assert completed.returncode == 3

    def test_check_raises_called_process_error(self):
        with pytest.raises(subprocess.CalledProcessError) as info:
            safe_run([sys.executable, "-c", "import sys; sys.exit(3)"], check=True)
        assert info.value.returncode == 3

    def test_denied_command_never_runs(self):
        with pytest.raises(CommandBlockedError, match="sudo"):
            safe_run(["sudo", "git", "status"])

    def test_timeout_raises_subprocess_error(self):
        with pytest.raises(CommandTimeoutError) as info:
            safe_run([sys.executable, "-c", "import time; time.sleep(5)"], timeout=1)
        assert isinstance(info.value, SubprocessError)
        assert "timed out after 1s" in str(info.value)
