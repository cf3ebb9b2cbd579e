from __future__ import annotations

import errno
import logging
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

from tethernet._utils import Flag, error_from_errno
from tethernet.connection import ConnectionState
from tethernet.deadline import Deadline, HeartbeatTimer
from tethernet.exceptions import LimitOverrunError
from tethernet.exchange import ExchangeLoop, ExchangeState
from tethernet.framing import MessageBuffer

import pytest

from ._utils import FakeClock, time_left

if TYPE_CHECKING:
    from unittest.mock import MagicMock

    from pytest_mock import MockerFixture


class TestExchangeLoop:
    @pytest.fixture(autouse=True)
    @staticmethod
    def connected(mock_connection: MagicMock) -> None:
        mock_connection.state = ConnectionState.CONNECTED

    @pytest.fixture
    @staticmethod
    def sink(mocker: MockerFixture) -> MagicMock:
        return mocker.stub(name="sink")

    @pytest.fixture
    @staticmethod
    def exchange_factory(
        mock_connection: MagicMock,
        deadline: Deadline,
        stopped: Flag,
        sink: MagicMock,
        logger: logging.Logger,
    ) -> Callable[..., ExchangeLoop]:
        def factory(source: Any, **kwargs: Any) -> ExchangeLoop:
            kwargs.setdefault("logger", logger)
            return ExchangeLoop(mock_connection, deadline, stopped, source, sink, **kwargs)

        return factory

    @staticmethod
    def _sent_data(mock_connection: MagicMock) -> list[bytes]:
        return [call.args[0] for call in mock_connection.send_all.await_args_list]

    def test____dunder_init____no_source_requires_heartbeat_interval(
        self,
        exchange_factory: Callable[..., ExchangeLoop],
    ) -> None:
        with pytest.raises(ValueError, match=r"^A heartbeat_interval is required when there is no message source$"):
            exchange_factory(None)

    def test____dunder_init____heartbeat_interval_requires_timer(
        self,
        exchange_factory: Callable[..., ExchangeLoop],
        mocker: MockerFixture,
    ) -> None:
        with pytest.raises(ValueError, match=r"^heartbeat_interval given without heartbeat_timer$"):
            exchange_factory(mocker.stub(), heartbeat_interval=1)

    def test____state____idle_before_run(self, exchange_factory: Callable[..., ExchangeLoop], mocker: MockerFixture) -> None:
        assert exchange_factory(mocker.stub()).state is ExchangeState.IDLE

    @pytest.mark.asyncio
    async def test____run____handshake_then_exchange(
        self,
        exchange_factory: Callable[..., ExchangeLoop],
        mock_connection: MagicMock,
        sink: MagicMock,
        mocker: MockerFixture,
    ) -> None:
        # Arrange
        source = mocker.MagicMock(side_effect=[b"ping", None])
        mock_connection.recv.return_value = b"Xpong\0"
        exchange = exchange_factory(source)

        # Act
        await exchange.run()

        # Assert
        assert self._sent_data(mock_connection) == [b"\n", b"ping\0"]
        mock_connection.recv.assert_awaited_once_with()
        sink.assert_called_once_with(b"pong")
        assert exchange.state is ExchangeState.HALTED

    @pytest.mark.asyncio
    async def test____run____handshake_disabled(
        self,
        exchange_factory: Callable[..., ExchangeLoop],
        mock_connection: MagicMock,
        mocker: MockerFixture,
    ) -> None:
        # Arrange
        source = mocker.MagicMock(side_effect=[b"ping", None])
        mock_connection.recv.return_value = b"Xpong\0"
        exchange = exchange_factory(source, handshake=None)

        # Act
        await exchange.run()

        # Assert
        assert self._sent_data(mock_connection) == [b"ping\0"]

    @pytest.mark.asyncio
    async def test____run____source_exhausted_immediately(
        self,
        exchange_factory: Callable[..., ExchangeLoop],
        mock_connection: MagicMock,
        sink: MagicMock,
        mocker: MockerFixture,
    ) -> None:
        # Arrange
        exchange = exchange_factory(mocker.MagicMock(return_value=None))

        # Act
        await exchange.run()

        # Assert
        assert self._sent_data(mock_connection) == [b"\n"]
        mock_connection.recv.assert_not_called()
        sink.assert_not_called()

    @pytest.mark.asyncio
    async def test____run____async_source(
        self,
        exchange_factory: Callable[..., ExchangeLoop],
        mock_connection: MagicMock,
        sink: MagicMock,
        mocker: MockerFixture,
    ) -> None:
        # Arrange
        source = mocker.AsyncMock(side_effect=[b"ping", None])
        mock_connection.recv.return_value = b"Xpong\0"
        exchange = exchange_factory(source)

        # Act
        await exchange.run()

        # Assert
        assert self._sent_data(mock_connection) == [b"\n", b"ping\0"]
        sink.assert_called_once_with(b"pong")

    @pytest.mark.asyncio
    async def test____run____outbound_message_framing(
        self,
        exchange_factory: Callable[..., ExchangeLoop],
        mock_connection: MagicMock,
        mocker: MockerFixture,
    ) -> None:
        # Arrange
        source = mocker.MagicMock(side_effect=[b"x" * 200, b"abc\0def", None])
        mock_connection.recv.return_value = b"Xok\0"
        exchange = exchange_factory(source, handshake=None)

        # Act
        await exchange.run()

        # Assert
        assert self._sent_data(mock_connection) == [b"x" * 127 + b"\0", b"abc\0"]

    @pytest.mark.asyncio
    async def test____run____strict_alternation(
        self,
        exchange_factory: Callable[..., ExchangeLoop],
        mock_connection: MagicMock,
        mocker: MockerFixture,
    ) -> None:
        # Arrange
        source = mocker.MagicMock(side_effect=[b"a", b"b", None])
        mock_connection.recv.side_effect = [b"Xa", b"\0", b"Xb\0"]
        exchange = exchange_factory(source)

        # Act
        await exchange.run()

        # Assert
        operations = [name for name, _, _ in mock_connection.mock_calls if name in {"send_all", "recv"}]
        assert operations == ["send_all", "send_all", "recv", "recv", "send_all", "recv"]

    @pytest.mark.asyncio
    async def test____run____empty_message_not_delivered(
        self,
        exchange_factory: Callable[..., ExchangeLoop],
        mock_connection: MagicMock,
        sink: MagicMock,
        mocker: MockerFixture,
    ) -> None:
        # Arrange
        source = mocker.MagicMock(side_effect=[b"ping", b"ping", None])
        mock_connection.recv.side_effect = [b"X\0", b"Xpong\0"]
        exchange = exchange_factory(source)

        # Act
        await exchange.run()

        # Assert
        sink.assert_called_once_with(b"pong")

    @pytest.mark.asyncio
    async def test____run____buffered_frames_consumed_first(
        self,
        exchange_factory: Callable[..., ExchangeLoop],
        mock_connection: MagicMock,
        sink: MagicMock,
        mocker: MockerFixture,
    ) -> None:
        # Arrange
        source = mocker.MagicMock(side_effect=[b"one", b"two", None])
        mock_connection.recv.return_value = b"Xone\0Xtwo\0"
        exchange = exchange_factory(source)

        # Act
        await exchange.run()

        # Assert
        mock_connection.recv.assert_awaited_once_with()
        assert sink.call_args_list == [mocker.call(b"one"), mocker.call(b"two")]

    @pytest.mark.asyncio
    async def test____run____deadline_set_during_operations_and_cleared(
        self,
        exchange_factory: Callable[..., ExchangeLoop],
        mock_connection: MagicMock,
        deadline: Deadline,
        fake_clock: FakeClock,
        mocker: MockerFixture,
    ) -> None:
        # Arrange
        remaining_on_send: list[float] = []
        remaining_on_recv: list[float] = []
        source = mocker.MagicMock(side_effect=[b"ping", None])
        mock_connection.send_all.side_effect = lambda data: remaining_on_send.append(time_left(deadline, fake_clock))

        def recv_side_effect() -> bytes:
            remaining_on_recv.append(time_left(deadline, fake_clock))
            return b"Xpong\0"

        mock_connection.recv.side_effect = recv_side_effect
        exchange = exchange_factory(source, send_timeout=5, recv_timeout=10)

        # Act
        await exchange.run()

        # Assert
        assert remaining_on_send == [5.0, 5.0]
        assert remaining_on_recv == [10.0]
        assert time_left(deadline, fake_clock) == float("inf")

    @pytest.mark.asyncio
    async def test____run____no_receive_deadline_by_default(
        self,
        exchange_factory: Callable[..., ExchangeLoop],
        mock_connection: MagicMock,
        deadline: Deadline,
        fake_clock: FakeClock,
        mocker: MockerFixture,
    ) -> None:
        # Arrange
        remaining_on_recv: list[float] = []
        source = mocker.MagicMock(side_effect=[b"ping", None])

        def recv_side_effect() -> bytes:
            remaining_on_recv.append(time_left(deadline, fake_clock))
            return b"Xpong\0"

        mock_connection.recv.side_effect = recv_side_effect
        exchange = exchange_factory(source)

        # Act
        await exchange.run()

        # Assert
        assert remaining_on_recv == [float("inf")]

    @pytest.mark.asyncio
    async def test____run____receive_error(
        self,
        exchange_factory: Callable[..., ExchangeLoop],
        mock_connection: MagicMock,
        sink: MagicMock,
        mocker: MockerFixture,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        # Arrange
        caplog.set_level(logging.ERROR, "tethernet.tests")
        error = error_from_errno(errno.ECONNABORTED, "{strerror} (connection closed by remote)")
        mock_connection.recv.side_effect = error
        exchange = exchange_factory(mocker.MagicMock(return_value=b"ping"))

        # Act
        with pytest.raises(ConnectionAbortedError) as exc_info:
            await exchange.run()

        # Assert
        assert exc_info.value is error
        assert exchange.state is ExchangeState.HALTED
        sink.assert_not_called()
        assert [rec.getMessage() for rec in caplog.records if rec.name == "tethernet.tests"] == [f"Error on receive: {error}"]

    @pytest.mark.asyncio
    async def test____run____send_error(
        self,
        exchange_factory: Callable[..., ExchangeLoop],
        mock_connection: MagicMock,
        mocker: MockerFixture,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        # Arrange
        caplog.set_level(logging.ERROR, "tethernet.tests")
        error = error_from_errno(errno.EPIPE)
        mock_connection.send_all.side_effect = error
        source = mocker.stub()
        exchange = exchange_factory(source)

        # Act
        with pytest.raises(BrokenPipeError):
            await exchange.run()

        # Assert
        source.assert_not_called()
        mock_connection.recv.assert_not_called()
        assert [rec.getMessage() for rec in caplog.records if rec.name == "tethernet.tests"] == [f"Error on send: {error}"]

    @pytest.mark.asyncio
    async def test____run____sink_error(
        self,
        exchange_factory: Callable[..., ExchangeLoop],
        mock_connection: MagicMock,
        sink: MagicMock,
        mocker: MockerFixture,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        # Arrange
        caplog.set_level(logging.ERROR, "tethernet.tests")
        error = BrokenPipeError("stdout closed")
        sink.side_effect = error
        mock_connection.recv.return_value = b"Xpong\0"
        source = mocker.MagicMock(side_effect=[b"ping", b"ping"])
        exchange = exchange_factory(source)

        # Act
        with pytest.raises(BrokenPipeError) as exc_info:
            await exchange.run()

        # Assert
        assert exc_info.value is error
        assert exchange.state is ExchangeState.HALTED
        sink.assert_called_once_with(b"pong")
        source.assert_called_once_with()
        assert [rec.getMessage() for rec in caplog.records if rec.name == "tethernet.tests"] == [
            f"Error in message sink: {error}"
        ]

    @pytest.mark.asyncio
    async def test____run____source_error(
        self,
        exchange_factory: Callable[..., ExchangeLoop],
        mock_connection: MagicMock,
        mocker: MockerFixture,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        # Arrange
        caplog.set_level(logging.ERROR, "tethernet.tests")
        error = OSError(errno.EBADF, "Bad file descriptor")
        exchange = exchange_factory(mocker.AsyncMock(side_effect=error))

        # Act
        with pytest.raises(OSError) as exc_info:
            await exchange.run()

        # Assert
        assert exc_info.value is error
        assert self._sent_data(mock_connection) == [b"\n"]
        assert [rec.getMessage() for rec in caplog.records if rec.name == "tethernet.tests"] == [
            f"Error in message source: {error}"
        ]

    @pytest.mark.asyncio
    async def test____run____source_error_after_stop_is_suppressed(
        self,
        exchange_factory: Callable[..., ExchangeLoop],
        mock_connection: MagicMock,
        stopped: Flag,
        mocker: MockerFixture,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        # Arrange
        caplog.set_level(logging.ERROR, "tethernet.tests")

        def source_side_effect() -> bytes:
            stopped.set()
            raise OSError(errno.EBADF, "Bad file descriptor")

        exchange = exchange_factory(mocker.MagicMock(side_effect=source_side_effect))

        # Act
        await exchange.run()

        # Assert
        assert exchange.state is ExchangeState.HALTED
        assert self._sent_data(mock_connection) == [b"\n"]
        assert not [rec for rec in caplog.records if rec.name == "tethernet.tests"]

    @pytest.mark.asyncio
    async def test____run____buffer_limit_overrun(
        self,
        exchange_factory: Callable[..., ExchangeLoop],
        mock_connection: MagicMock,
        mocker: MockerFixture,
    ) -> None:
        # Arrange
        mock_connection.recv.return_value = b"X" * 16
        exchange = exchange_factory(mocker.MagicMock(return_value=b"ping"), buffer=MessageBuffer(limit=8))

        # Act & Assert
        with pytest.raises(LimitOverrunError):
            await exchange.run()

    @pytest.mark.asyncio
    async def test____run____completion_after_stop_is_suppressed(
        self,
        exchange_factory: Callable[..., ExchangeLoop],
        mock_connection: MagicMock,
        deadline: Deadline,
        fake_clock: FakeClock,
        stopped: Flag,
        sink: MagicMock,
        mocker: MockerFixture,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        # Arrange
        caplog.set_level(logging.DEBUG, "tethernet.tests")

        def recv_side_effect() -> bytes:
            stopped.set()
            raise error_from_errno(errno.ECONNABORTED)

        mock_connection.recv.side_effect = recv_side_effect
        exchange = exchange_factory(mocker.MagicMock(return_value=b"ping"), recv_timeout=10)

        # Act
        await exchange.run()

        # Assert
        sink.assert_not_called()
        assert exchange.state is ExchangeState.HALTED
        assert not [rec for rec in caplog.records if rec.name == "tethernet.tests" and rec.levelno >= logging.ERROR]
        # Nothing touched the deadline after the stop
        assert time_left(deadline, fake_clock) == 10.0

    @pytest.mark.asyncio
    async def test____run____successful_receive_after_stop_is_not_delivered(
        self,
        exchange_factory: Callable[..., ExchangeLoop],
        mock_connection: MagicMock,
        stopped: Flag,
        sink: MagicMock,
        mocker: MockerFixture,
    ) -> None:
        # Arrange
        def recv_side_effect() -> bytes:
            stopped.set()
            return b"Xpong\0"

        mock_connection.recv.side_effect = recv_side_effect
        exchange = exchange_factory(mocker.MagicMock(return_value=b"ping"))

        # Act
        await exchange.run()

        # Assert
        sink.assert_not_called()

    @pytest.mark.asyncio
    async def test____run____stopped_before_run(
        self,
        exchange_factory: Callable[..., ExchangeLoop],
        mock_connection: MagicMock,
        stopped: Flag,
        mocker: MockerFixture,
    ) -> None:
        # Arrange
        stopped.set()
        exchange = exchange_factory(mocker.stub())

        # Act
        await exchange.run()

        # Assert
        mock_connection.send_all.assert_not_called()
        assert exchange.state is ExchangeState.HALTED

    @pytest.mark.asyncio
    async def test____run____called_twice(
        self,
        exchange_factory: Callable[..., ExchangeLoop],
        mocker: MockerFixture,
    ) -> None:
        # Arrange
        exchange = exchange_factory(mocker.MagicMock(return_value=None))
        await exchange.run()

        # Act & Assert
        with pytest.raises(RuntimeError, match=r"^ExchangeLoop\.run\(\) called twice$"):
            await exchange.run()

    @pytest.mark.asyncio
    async def test____run____heartbeat_without_source(
        self,
        exchange_factory: Callable[..., ExchangeLoop],
        mock_connection: MagicMock,
        sink: MagicMock,
        mocker: MockerFixture,
    ) -> None:
        # Arrange
        mock_heartbeat_timer = mocker.NonCallableMagicMock(spec=HeartbeatTimer)
        mock_heartbeat_timer.wait.side_effect = [True, True, False]
        mock_connection.recv.side_effect = [b"X\0", b"X\0"]
        exchange = exchange_factory(None, heartbeat_timer=mock_heartbeat_timer, heartbeat_interval=2.5)

        # Act
        await exchange.run()

        # Assert
        assert self._sent_data(mock_connection) == [b"\n", b"\0", b"\0"]
        assert mock_heartbeat_timer.wait.await_args_list == [mocker.call(2.5)] * 3
        sink.assert_not_called()

    @pytest.mark.asyncio
    async def test____run____heartbeat_interval_before_each_message(
        self,
        exchange_factory: Callable[..., ExchangeLoop],
        mock_connection: MagicMock,
        mocker: MockerFixture,
    ) -> None:
        # Arrange
        manager = mocker.MagicMock()
        mock_heartbeat_timer = mocker.NonCallableMagicMock(spec=HeartbeatTimer)
        mock_heartbeat_timer.wait.return_value = True
        source = mocker.MagicMock(side_effect=[b"ping", None])
        manager.attach_mock(mock_heartbeat_timer.wait, "wait")
        manager.attach_mock(source, "source")
        mock_connection.recv.return_value = b"Xpong\0"
        exchange = exchange_factory(source, heartbeat_timer=mock_heartbeat_timer, heartbeat_interval=1)

        # Act
        await exchange.run()

        # Assert
        assert manager.mock_calls == [
            mocker.call.wait(1.0),
            mocker.call.source(),
            mocker.call.wait(1.0),
            mocker.call.source(),
        ]

    @pytest.mark.asyncio
    async def test____run____no_sink_messages_are_logged(
        self,
        mock_connection: MagicMock,
        deadline: Deadline,
        stopped: Flag,
        logger: logging.Logger,
        mocker: MockerFixture,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        # Arrange
        caplog.set_level(logging.INFO, "tethernet.tests")
        mock_connection.recv.return_value = b"Xpong\0"
        source = mocker.MagicMock(side_effect=[b"ping", None])
        exchange = ExchangeLoop(mock_connection, deadline, stopped, source, None, logger=logger)

        # Act
        await exchange.run()

        # Assert
        assert "Message from server: b'pong'" in [rec.getMessage() for rec in caplog.records]
