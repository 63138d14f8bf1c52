"""TCP server that relays sensor readings to shared memory and commands to the node.

A sensor node connects over TCP and streams readings, each packet carrying a
temperature and a humidity. The latest reading is published in a shared
memory block for local programs. Local tools queue commands on the command
queue, and the server forwards them to the connected node.
"""

from __future__ import annotations

import argparse
import logging
import os
import signal
import socket
import tempfile
import threading
from dataclasses import dataclass, field
from typing import Iterator, List, Optional, TypeVar

from .fifo import Fifo
from .ipc import CommandQueue, SharedReading
from .models import MAIN, SensorData

log = logging.getLogger(__name__)

PORT = 8888
BUFFER_SIZE = 1024
BACKLOG = 128
DEFAULT_SHM_NAME = "sensorhub"
DEFAULT_QUEUE_PATH = os.path.join(tempfile.gettempdir(), "sensorhub.cmd")

_POLL_INTERVAL = 0.2

T = TypeVar("T")


def _drain(fifo: Fifo[T]) -> Iterator[T]:
    while not fifo.is_empty():
        yield fifo.get()


@dataclass
class _Session:
    """State shared by the workers serving one connected node."""

    conn: socket.socket
    stop: threading.Event = field(default_factory=threading.Event)
    commands: Fifo[str] = field(default_factory=Fifo)
    commands_ready: threading.Condition = field(default_factory=threading.Condition)
    readings: Fifo[SensorData] = field(default_factory=Fifo)
    readings_ready: threading.Condition = field(default_factory=threading.Condition)

    def finish(self) -> None:
        self.stop.set()
        for condition in (self.commands_ready, self.readings_ready):
            with condition:
                condition.notify_all()


class SensorServer:
    """Serves one sensor node at a time on a listening TCP socket."""

    def __init__(
        self,
        host: str = "0.0.0.0",
        port: int = PORT,
        queue_path=DEFAULT_QUEUE_PATH,
        shm_name: str = DEFAULT_SHM_NAME,
    ) -> None:
        self._listener = socket.create_server((host, port), backlog=BACKLOG)
        try:
            self._listener.settimeout(_POLL_INTERVAL)
            self.queue = CommandQueue(queue_path, create=True)
            try:
                self.reading = SharedReading(shm_name, create=True)
            except BaseException:
                self.queue.close()
                raise
        except BaseException:
            self._listener.close()
            raise
        self.address = self._listener.getsockname()
        self._state_lock = threading.Lock()
        self._stopping = threading.Event()
        self._serving = False
        self._released = False
        self._conn: Optional[socket.socket] = None

    def serve_forever(self) -> None:
        """Accept nodes one after another until `shutdown` is called."""
        with self._state_lock:
            if self._released or self._stopping.is_set():
                raise RuntimeError("server has been shut down")
            self._serving = True
        try:
            while not self._stopping.is_set():
                try:
                    conn, peer = self._listener.accept()
                except socket.timeout:
                    continue
                except OSError as exc:
                    if self._stopping.is_set():
                        break
                    log.error("accept failed: %s", exc)
                    continue
                log.info("client connected: %s", peer[0])
                self.handle_client(conn)
                log.info("client disconnected")
        finally:
            self._release()

    def handle_client(self, conn: socket.socket) -> None:
        """Serve one connected node until it disconnects or the server stops."""
        with self._state_lock:
            if self._stopping.is_set():
                conn.close()
                return
            self._conn = conn
        session = _Session(conn)
        workers = [
            threading.Thread(target=target, args=(session,), name=name, daemon=True)
            for target, name in (
                (self._pump_commands, "sensorhub-commands"),
                (self._send_commands, "sensorhub-send"),
                (self._refresh_reading, "sensorhub-refresh"),
            )
        ]
        for worker in workers:
            worker.start()
        try:
            self._receive_readings(session)
        finally:
            session.finish()
            for worker in workers:
                worker.join()
            with self._state_lock:
                self._conn = None
            conn.close()

    def shutdown(self) -> None:
        """Stop serving; resources are released once the serving loop exits."""
        with self._state_lock:
            self._stopping.set()
            conn = self._conn
            serving = self._serving
        if conn is not None:
            try:
                conn.shutdown(socket.SHUT_RDWR)
            except OSError:
                pass
        if not serving:
            self._release()

    def _release(self) -> None:
        with self._state_lock:
            if self._released:
                return
            self._released = True
        self._listener.close()
        self.queue.close()
        self.reading.close()
        self.reading.unlink()

    def _receive_readings(self, session: _Session) -> None:
        try:
            while not session.stop.is_set():
                data = session.conn.recv(BUFFER_SIZE - 1)
                if not data:
                    log.info("connection closed by peer")
                    return
                reading = SensorData.from_bytes(data)
                log.debug("recv: %.2f %.2f", reading.temperature, reading.humidity)
                with session.readings_ready:
                    session.readings.put(reading)
                    session.readings_ready.notify()
        except OSError as exc:
            log.error("recv error: %s", exc)

    def _pump_commands(self, session: _Session) -> None:
        while not session.stop.is_set():
            try:
                message = self.queue.receive(MAIN, timeout=_POLL_INTERVAL)
            except TimeoutError:
                continue
            except (ValueError, OSError):
                return
            log.info("got command: %s", message.text)
            with session.commands_ready:
                session.commands.put(message.text)
                session.commands_ready.notify()

    def _send_commands(self, session: _Session) -> None:
        while True:
            with session.commands_ready:
                while session.commands.is_empty() and not session.stop.is_set():
                    session.commands_ready.wait()
                if session.stop.is_set():
                    return
                pending: List[str] = list(_drain(session.commands))
            for command in pending:
                try:
                    session.conn.sendall(command.encode("utf-8"))
                except OSError as exc:
                    log.error("send error: %s", exc)
                    continue
                log.info("sent command: %s", command)

    def _refresh_reading(self, session: _Session) -> None:
        while True:
            with session.readings_ready:
                while session.readings.is_empty() and not session.stop.is_set():
                    session.readings_ready.wait()
                if session.stop.is_set():
                    return
                latest = list(_drain(session.readings))[-1]
            try:
                self.reading.write(latest)
            except ValueError:
                return


def main(argv=None) -> int:
    """Run the server until interrupted."""
    parser = argparse.ArgumentParser(
        prog="sensorhub",
        description="Relay sensor readings to shared memory and commands to the node.",
    )
    parser.add_argument("--host", default="0.0.0.0", help="address to listen on")
    parser.add_argument("--port", type=int, default=PORT, help="TCP port")
    parser.add_argument(
        "--queue", default=DEFAULT_QUEUE_PATH, help="path of the command queue"
    )
    parser.add_argument(
        "--shm", default=DEFAULT_SHM_NAME, help="name of the shared reading block"
    )
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO, format="%(message)s")
    server = SensorServer(args.host, args.port, args.queue, args.shm)
    signal.signal(signal.SIGTERM, lambda signo, frame: server.shutdown())
    print(f"Server running on port {server.address[1]}...")
    try:
        server.serve_forever()
    except KeyboardInterrupt:
        server.shutdown()
    print("All quit")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())