from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from tethernet._utils import Flag
from tethernet.connection import Connection, ConnectionState
from tethernet.deadline import Deadline
from tethernet.endpoint import Endpoint

import pytest

from ._utils import FakeClock

if TYPE_CHECKING:
    from unittest.mock import MagicMock

    from pytest_mock import MockerFixture


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock(1000.0)


@pytest.fixture
def deadline(fake_clock: FakeClock) -> Deadline:
    return Deadline(fake_clock)


@pytest.fixture
def stopped() -> Flag:
    return Flag()


@pytest.fixture
def logger() -> logging.Logger:
    return logging.getLogger("tethernet.tests")


@pytest.fixture
def endpoints() -> list[Endpoint]:
    return [
        Endpoint.from_address(("127.0.0.1", 9000)),
        Endpoint.from_address(("::1", 9000)),
        Endpoint.from_address(("127.0.0.2", 9001)),
    ]


@pytest.fixture
def mock_connection(mocker: MockerFixture) -> MagicMock:
    mock_connection = mocker.NonCallableMagicMock(spec=Connection, name="mock_connection")
    mock_connection.state = ConnectionState.UNCONNECTED
    mock_connection.remote_endpoint = None
    mock_connection.is_open.return_value = True
    mock_connection.is_closed.return_value = False
    mock_connection.is_busy.return_value = False
    return mock_connection
