import asyncio

import pytest

from lt_common.errors import ConfigurationError, PipeConnectTimeout, PipeError
from lt_common.pipes import PipeListener, PipeState, connect_pipe, pipe_path
from lt_common.protocol import increment


pytestmark = pytest.mark.unit_common


def test_pipe_path_uses_socket_suffix(pipe_dir):
    assert pipe_path("ProgressPipe", pipe_dir) == pipe_dir / "ProgressPipe.sock"


@pytest.mark.parametrize("name", ["", "  ", "a/b", "..", "a\\b"])
def test_pipe_path_rejects_invalid_names(name, pipe_dir):
    with pytest.raises(ConfigurationError):
        pipe_path(name, pipe_dir)


def test_pipe_dir_defaults_to_environment(monkeypatch, pipe_dir):
    monkeypatch.setenv("LT_PIPE_DIR", str(pipe_dir))
    assert pipe_path("x") == pipe_dir / "x.sock"


def test_lines_flow_both_ways(pipe_dir):
    async def scenario():
        async with PipeListener("duplex", pipe_dir) as listener:
            assert listener.state is PipeState.WAITING
            client = await connect_pipe("duplex", timeout=2, pipe_dir=pipe_dir)
            server = await listener.wait_for_connection(timeout=2)
            assert listener.state is PipeState.CONNECTED

            await client.send(increment())
            assert await server.read_line() == "increment"
            await server.send_line("cancel")
            assert await client.read_line() == "cancel"

            await client.close()
            assert await server.read_line() is None
        return listener

    listener = asyncio.run(scenario())
    assert listener.state is PipeState.CLOSED
    assert not listener.path.exists()


def test_second_peer_is_rejected(pipe_dir):
    async def scenario():
        async with PipeListener("single", pipe_dir) as listener:
            first = await connect_pipe("single", timeout=2, pipe_dir=pipe_dir)
            accepted = await listener.wait_for_connection(timeout=2)
            second = await connect_pipe("single", timeout=2, pipe_dir=pipe_dir)
            rejected_eof = await asyncio.wait_for(second.read_line(), timeout=2)
            await first.send_line("still here")
            line = await accepted.read_line()
            await first.close()
            await second.close()
            return rejected_eof, line

    rejected_eof, line = asyncio.run(scenario())
    assert rejected_eof is None
    assert line == "still here"


def test_wait_for_connection_timeout_can_be_retried(pipe_dir):
    async def scenario():
        async with PipeListener("retry", pipe_dir) as listener:
            with pytest.raises(PipeConnectTimeout):
                await listener.wait_for_connection(timeout=0.1)
            client = await connect_pipe("retry", timeout=2, pipe_dir=pipe_dir)
            connection = await listener.wait_for_connection(timeout=2)
            await client.close()
            return connection

    assert asyncio.run(scenario()) is not None


def test_connect_times_out_without_listener(pipe_dir):
    async def scenario():
        await connect_pipe("nobody", timeout=0.2, pipe_dir=pipe_dir)

    with pytest.raises(PipeConnectTimeout):
        asyncio.run(scenario())


def test_connect_reports_unusable_socket_path_as_pipe_error(pipe_dir):
    too_long = pipe_dir / ("x" * 120)

    async def scenario():
        await connect_pipe("nobody", timeout=5, pipe_dir=too_long)

    with pytest.raises(PipeError) as excinfo:
        asyncio.run(scenario())
    assert not isinstance(excinfo.value, PipeConnectTimeout)
    assert isinstance(excinfo.value.__cause__, OSError)


def test_connect_waits_for_a_late_listener(pipe_dir):
    async def scenario():
        listener = PipeListener("late", pipe_dir)

        async def open_later():
            await asyncio.sleep(0.2)
            await listener.open()

        opener = asyncio.create_task(open_later())
        client = await connect_pipe("late", timeout=2, pipe_dir=pipe_dir)
        await opener
        await listener.wait_for_connection(timeout=2)
        await client.close()
        await listener.close()
        return True

    assert asyncio.run(scenario())


def test_close_is_idempotent_and_removes_stale_socket(pipe_dir):
    stale = pipe_dir / "stale.sock"
    stale.write_text("")

    async def scenario():
        listener = PipeListener("stale", pipe_dir)
        await listener.open()
        await listener.close()
        await listener.close()
        return listener

    listener = asyncio.run(scenario())
    assert listener.state is PipeState.CLOSED
    assert not stale.exists()


def test_send_after_close_raises(pipe_dir):
    async def scenario():
        async with PipeListener("gone", pipe_dir) as listener:
            client = await connect_pipe("gone", timeout=2, pipe_dir=pipe_dir)
            await listener.wait_for_connection(timeout=2)
            await client.close()
            assert not client.is_connected
            await client.send_line("increment")

    with pytest.raises(PipeError):
        asyncio.run(scenario())


def test_wait_after_close_raises(pipe_dir):
    async def scenario():
        listener = PipeListener("closed", pipe_dir)
        await listener.open()
        await listener.close()
        await listener.wait_for_connection(timeout=0.1)

    with pytest.raises(PipeError):
        asyncio.run(scenario())
