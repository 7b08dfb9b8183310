"""Tests for the psutil process table and detached spawning against real processes."""

import os
import sys
import tempfile
import textwrap
import time
import unittest
from pathlib import Path
from unittest import mock

import psutil

from botsupervisor.config import UTF8_ENVIRONMENT, Config
from botsupervisor.errors import TerminationError
from botsupervisor.process import ProcessTable, spawn_detached

SLEEPER = textwrap.dedent(
    """
    import os
    import sys
    import time

    print("ready", os.environ.get("PYTHONUTF8"), flush=True)
    print("to stderr", file=sys.stderr, flush=True)
    time.sleep(60)
    """
)


def _wait_for(predicate, timeout: float = 10.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.05)
    return predicate()


class SpawnAndKillTests(unittest.TestCase):
    """Launch a real sleeping child, find it, then kill it."""

    def setUp(self) -> None:
        self._tmpdir = tempfile.TemporaryDirectory()
        root = Path(self._tmpdir.name)
        self.script = root / "sleeper_bot.py"
        self.script.write_text(SLEEPER, encoding="utf-8")
        self.config = Config(
            install_dir=root,
            script_name=self.script.name,
            interpreter=sys.executable,
            logs_dir=root / "logs",
            pid_file=root / "bot.pid",
        )
        self.table = ProcessTable()
        self.pid = None

    def tearDown(self) -> None:
        if self.pid is not None and psutil.pid_exists(self.pid):
            try:
                proc = psutil.Process(self.pid)
                proc.kill()
                proc.wait(timeout=5)
            except psutil.Error:
                pass
        self._tmpdir.cleanup()

    def _spawn(self) -> int:
        self.pid = spawn_detached(
            self.config.command(),
            cwd=self.config.install_dir,
            env=self.config.child_env(),
            stdout_path=self.config.stdout_log,
            stderr_path=self.config.stderr_log,
        )
        return self.pid

    def test_spawned_child_is_found_redirected_and_killed(self) -> None:
        pid = self._spawn()

        self.assertTrue(
            _wait_for(lambda: self.config.stdout_log.exists() and "ready" in self.config.stdout_log.read_text())
        )
        self.assertIn(f"ready {UTF8_ENVIRONMENT['PYTHONUTF8']}", self.config.stdout_log.read_text())
        self.assertTrue(_wait_for(lambda: "to stderr" in self.config.stderr_log.read_text()))

        info = self.table.get(pid)
        self.assertIsNotNone(info)
        self.assertIn(self.script.name, info.command_line)
        self.assertTrue(any(p.pid == pid for p in self.table.scan() if self.script.name in p.command_line))

        self.table.kill(pid, timeout=5)
        self.assertIsNone(self.table.get(pid))
        self.assertFalse(psutil.pid_exists(pid))

    @unittest.skipIf(sys.platform == "win32", "sessions are a POSIX concept")
    def test_spawned_child_runs_in_its_own_session(self) -> None:
        pid = self._spawn()
        self.assertEqual(os.getsid(pid), pid)
        self.assertNotEqual(os.getsid(pid), os.getsid(0))

    def test_killing_a_vanished_process_is_a_termination_error(self) -> None:
        pid = self._spawn()
        self.table.kill(pid, timeout=5)
        with self.assertRaises(TerminationError):
            self.table.kill(pid, timeout=1)


class ProcessTableEdgeTests(unittest.TestCase):
    """Cover the psutil corner cases that real processes rarely produce on demand."""

    def test_get_missing_pid_returns_none(self) -> None:
        with mock.patch("botsupervisor.process.psutil.Process", side_effect=psutil.NoSuchProcess(4821)):
            self.assertIsNone(ProcessTable().get(4821))

    def test_get_denied_pid_returns_none(self) -> None:
        with mock.patch("botsupervisor.process.psutil.Process", side_effect=psutil.AccessDenied(4)):
            self.assertIsNone(ProcessTable().get(4))

    def test_scan_tolerates_missing_name_and_cmdline(self) -> None:
        hidden = mock.Mock(info={"pid": 4, "name": None, "cmdline": None})
        visible = mock.Mock(info={"pid": 5, "name": "python", "cmdline": ["python", "main.py"]})
        with mock.patch("botsupervisor.process.psutil.process_iter", return_value=[hidden, visible]):
            rows = list(ProcessTable().scan())

        self.assertEqual(rows[0].pid, 4)
        self.assertEqual(rows[0].name, "")
        self.assertEqual(rows[0].cmdline, [])
        self.assertEqual(rows[0].command_line, "")
        self.assertEqual(rows[1].command_line, "python main.py")

    def test_process_surviving_kill_is_a_termination_error(self) -> None:
        proc = mock.Mock()
        proc.children.return_value = []
        with mock.patch("botsupervisor.process.psutil.Process", return_value=proc), \
                mock.patch("botsupervisor.process.psutil.wait_procs", return_value=([], [proc])):
            with self.assertRaises(TerminationError):
                ProcessTable().kill(123, timeout=0.1)
        proc.kill.assert_called_once_with()

    def test_children_are_killed_before_parent(self) -> None:
        order = []
        child = mock.Mock()
        child.kill.side_effect = lambda: order.append("child")
        proc = mock.Mock()
        proc.children.return_value = [child]
        proc.kill.side_effect = lambda: order.append("parent")
        with mock.patch("botsupervisor.process.psutil.Process", return_value=proc), \
                mock.patch("botsupervisor.process.psutil.wait_procs", return_value=([proc], [])):
            ProcessTable().kill(123, timeout=1)
        self.assertEqual(order, ["child", "parent"])

    def test_access_denied_on_kill_is_a_termination_error(self) -> None:
        proc = mock.Mock()
        proc.children.return_value = []
        proc.kill.side_effect = psutil.AccessDenied(123)
        with mock.patch("botsupervisor.process.psutil.Process", return_value=proc):
            with self.assertRaises(TerminationError):
                ProcessTable().kill(123, timeout=1)


if __name__ == "__main__":
    unittest.main()
