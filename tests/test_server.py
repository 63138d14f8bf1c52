import os
import socket
import struct
import threading
import time
import uuid
from contextlib import contextmanager

import pytest

from sensorhub.ipc import CommandQueue, SharedReading
from sensorhub.models import SensorData
from sensorhub.server import SensorServer, main


def _wait_for(predicate, timeout=5.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.02)
    return predicate()


@pytest.fixture
def shm_name():
    return f"sh-test-{uuid.uuid4().hex[:12]}"


@pytest.fixture
def server(tmp_path, shm_name):
    srv = SensorServer("127.0.0.1", 0, tmp_path / "q", shm_name)
    yield srv
    srv.shutdown()


@contextmanager
def _session(server):
    ours, theirs = socket.socketpair()
    worker = threading.Thread(target=server.handle_client, args=(ours,), daemon=True)
    worker.start()
    try:
        yield theirs, worker
    finally:
        theirs.close()
        worker.join(5)


def test_reading_reaches_shared_memory(server):
    expected = SensorData(21.5, 40.25)
    with _session(server) as (node, _):
        node.sendall(expected.to_bytes())
        _wait_for(lambda: server.reading.read() == expected)
        assert server.reading.read() == expected


def test_short_packet_fills_missing_bytes_with_zero(server):
    with _session(server) as (node, _):
        node.sendall(struct.pack("<f", 19.5))
        _wait_for(lambda: server.reading.read() == SensorData(19.5, 0.0))
        assert server.reading.read() == SensorData(19.5, 0.0)


def test_latest_reading_wins(server):
    readings = [SensorData(20.0, 30.0), SensorData(22.5, 35.5), SensorData(25.0, 50.0)]
    with _session(server) as (node, _):
        for reading in readings:
            node.sendall(reading.to_bytes())
            assert _wait_for(lambda: server.reading.read() == reading)
    assert server.reading.read() == readings[-1]


def test_command_forwarded_to_node(server):
    with _session(server) as (node, _):
        node.settimeout(5)
        with CommandQueue(server.queue.path) as tool:
            tool.send("data_on")
        assert node.recv(64) == b"data_on"


def test_only_main_type_commands_forwarded(server):
    with _session(server) as (node, _):
        with CommandQueue(server.queue.path) as tool:
            tool.send("camera_on", msg_type=2)
            tool.send("data_off")
        node.settimeout(5)
        assert node.recv(64) == b"data_off"
        node.settimeout(0.5)
        with pytest.raises(TimeoutError):
            node.recv(64)


def test_handle_client_returns_when_peer_closes(server):
    ours, theirs = socket.socketpair()
    worker = threading.Thread(target=server.handle_client, args=(ours,), daemon=True)
    worker.start()
    theirs.close()
    worker.join(5)
    assert not worker.is_alive()
    assert ours.fileno() == -1


def test_serve_forever_over_tcp_and_cleanup(server, shm_name):
    queue_path = server.queue.path
    loop = threading.Thread(target=server.serve_forever, daemon=True)
    loop.start()
    expected = SensorData(18.25, 60.5)
    with socket.create_connection(server.address, timeout=5) as node:
        node.sendall(expected.to_bytes())
        assert _wait_for(lambda: server.reading.read() == expected)
    server.shutdown()
    loop.join(5)
    assert not loop.is_alive()
    assert not os.path.exists(queue_path)
    with pytest.raises(FileNotFoundError):
        SharedReading(shm_name)


def test_shutdown_disconnects_active_node(server):
    loop = threading.Thread(target=server.serve_forever, daemon=True)
    loop.start()
    expected = SensorData(23.0, 45.0)
    with socket.create_connection(server.address, timeout=5) as node:
        node.sendall(expected.to_bytes())
        assert _wait_for(lambda: server.reading.read() == expected)
        server.shutdown()
        loop.join(5)
        assert not loop.is_alive()
        assert node.recv(64) == b""


def test_shutdown_without_serving_releases_queue(server):
    queue_path = server.queue.path
    assert os.path.exists(queue_path)
    server.shutdown()
    assert not os.path.exists(queue_path)
    with pytest.raises(FileNotFoundError):
        CommandQueue(queue_path)


def test_serve_forever_after_shutdown_raises(server):
    server.shutdown()
    with pytest.raises(RuntimeError):
        server.serve_forever()


def test_second_server_on_same_queue_is_refused(server, tmp_path):
    other_shm = f"sh-test-{uuid.uuid4().hex[:12]}"
    with pytest.raises(FileExistsError):
        SensorServer("127.0.0.1", 0, server.queue.path, other_shm)


def test_main_help_exits_cleanly(capsys):
    with pytest.raises(SystemExit) as excinfo:
        main(["--help"])
    assert excinfo.value.code == 0
    assert "--queue" in capsys.readouterr().out