"""
Tests for fibcalc.main.GatewayServer

Shutdown is bounded: the first exit signal arms a deadline after which the
process exits with status 1, and an exception escaping to the event loop
takes the same path.
"""

from __future__ import annotations

import os
import signal
import threading
from typing import Generator
from unittest.mock import MagicMock

import pytest
import uvicorn

from fibcalc.main import GatewayServer, create_app
from fibcalc.stores import memory_stores


@pytest.fixture
def server(settings, monkeypatch) -> Generator[GatewayServer, None, None]:
    # depends on monkeypatch so a patched os._exit outlives the deadline timer
    app = create_app(settings, stores=memory_stores(), embedded_worker=False)
    gateway = GatewayServer(uvicorn.Config(app), hard_timeout=0.05)
    yield gateway
    if gateway._deadline is not None:
        gateway._deadline.cancel()


class TestHardDeadline:
    def test_force_exit_after_timeout(self, server, monkeypatch):
        exit_codes: list[int] = []
        exited = threading.Event()

        def fake_exit(code: int) -> None:
            exit_codes.append(code)
            exited.set()

        monkeypatch.setattr(os, "_exit", fake_exit)

        server.handle_exit(signal.SIGTERM, None)

        assert server.should_exit is True
        assert exited.wait(timeout=2)
        assert exit_codes == [1]

    def test_second_signal_keeps_first_deadline(self, server, monkeypatch):
        monkeypatch.setattr(os, "_exit", lambda code: None)

        server.handle_exit(signal.SIGTERM, None)
        first = server._deadline
        server.handle_exit(signal.SIGINT, None)

        assert server._deadline is first

    def test_no_deadline_before_signal(self, server):
        assert server._deadline is None
        assert server.should_exit is False


class TestLoopExceptions:
    def test_unhandled_exception_starts_shutdown(self, server):
        server.handle_exit = MagicMock()

        server._on_loop_exception(
            MagicMock(),
            {"message": "Task exception was never retrieved", "exception": RuntimeError("boom")},
        )

        server.handle_exit.assert_called_once_with(signal.SIGTERM, None)

    def test_context_without_exception_starts_shutdown(self, server):
        server.handle_exit = MagicMock()

        server._on_loop_exception(MagicMock(), {"message": "socket.send() raised"})

        server.handle_exit.assert_called_once_with(signal.SIGTERM, None)
