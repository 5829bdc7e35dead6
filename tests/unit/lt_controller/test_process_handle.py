import asyncio
import os
import sys
import time

import pytest

from lt_common.errors import SubprocessNotFound
from lt_controller.process import ProcessHandle, ProcessRole
from tests.helpers.fake_tools import write_script
from tests.helpers.polling import wait_until


pytestmark = pytest.mark.unit_controller


def test_output_is_copied_to_run_log_with_role_prefix(tmp_path, run_log):
    script = write_script(
        tmp_path / "child.py",
        """
        import sys
        print("hello", flush=True)
        print("bad thing", file=sys.stderr, flush=True)
        sys.exit(2)
        """,
    )

    async def scenario():
        handle = ProcessHandle(ProcessRole.DRIVER, [str(script)], run_log=run_log)
        await handle.start()
        return handle, await handle.wait()

    handle, returncode = asyncio.run(scenario())

    assert returncode == 2
    assert handle.returncode == 2
    assert not handle.running
    assert run_log.contains(f"Started driver (pid {handle.pid})")
    assert "driver: hello" in run_log.lines
    assert "driver ERROR: bad thing" in run_log.lines


def test_missing_executable_raises_not_found(tmp_path, run_log):
    handle = ProcessHandle(
        ProcessRole.METRICS, [str(tmp_path / "absent")], run_log=run_log
    )
    with pytest.raises(SubprocessNotFound):
        asyncio.run(handle.start())
    assert not handle.started


def test_start_twice_is_rejected(tmp_path):
    script = write_script(tmp_path / "child.py", "print('x')\n")

    async def scenario():
        handle = ProcessHandle(ProcessRole.DRIVER, [str(script)])
        await handle.start()
        try:
            await handle.start()
        finally:
            await handle.dispose()

    with pytest.raises(RuntimeError):
        asyncio.run(scenario())


def test_wait_for_exit_times_out_on_running_process(tmp_path):
    script = write_script(tmp_path / "sleepy.py", "import time\ntime.sleep(30)\n")

    async def scenario():
        handle = ProcessHandle(ProcessRole.DRIVER, [str(script)])
        await handle.start()
        try:
            exited = await handle.wait_for_exit(0.1)
            running = handle.running
        finally:
            await handle.terminate(2)
        return exited, running, handle

    exited, running, handle = asyncio.run(scenario())
    assert exited is False
    assert running is True
    assert not handle.running


def test_terminate_kills_process_ignoring_sigterm(tmp_path, run_log):
    script = write_script(
        tmp_path / "stubborn.py",
        """
        import signal, time
        signal.signal(signal.SIGTERM, signal.SIG_IGN)
        print("ready", flush=True)
        time.sleep(60)
        """,
    )

    async def scenario():
        handle = ProcessHandle(ProcessRole.DRIVER, [str(script)], run_log=run_log)
        await handle.start()
        await wait_until(lambda: run_log.contains("driver: ready"))
        started = time.monotonic()
        returncode = await handle.terminate(0.3)
        return returncode, time.monotonic() - started

    returncode, elapsed = asyncio.run(scenario())
    assert returncode == -9
    assert elapsed < 5


def test_terminate_reaches_grandchildren(tmp_path):
    pid_file = tmp_path / "grandchild.pid"
    script = write_script(
        tmp_path / "parent.py",
        f"""
        import subprocess, sys, time
        child = subprocess.Popen([sys.executable, "-c", "import time; time.sleep(60)"])
        with open({str(pid_file)!r}, "w") as fh:
            fh.write(str(child.pid))
        time.sleep(60)
        """,
    )

    async def scenario():
        handle = ProcessHandle(ProcessRole.DRIVER, [str(script)])
        await handle.start()
        await wait_until(lambda: pid_file.exists() and pid_file.read_text())
        await handle.terminate(2)
        grandchild = int(pid_file.read_text())
        return await wait_until(lambda: not _alive(grandchild), timeout=5)

    assert asyncio.run(scenario())


def test_dispose_on_unstarted_handle_is_a_no_op():
    handle = ProcessHandle(ProcessRole.DRIVER, [sys.executable, "-c", "pass"])
    asyncio.run(handle.dispose())
    assert handle.returncode is None


def _alive(pid: int) -> bool:
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    # A zombie still answers signal 0; treat it as gone.
    try:
        with open(f"/proc/{pid}/stat", encoding="utf-8") as fh:
            return fh.read().split()[2] != "Z"
    except OSError:
        return True
