"""Local channels between the server and the programs on the same machine.

`SharedReading` holds the latest sensor reading in a named shared memory
block guarded by an inter-process lock. `CommandQueue` carries fixed-size
typed command records from local tools to the server over a datagram socket.
"""

from __future__ import annotations

import errno
import fcntl
import os
import select
import socket
import tempfile
import threading
import time
from collections import deque
from contextlib import contextmanager
from multiprocessing.shared_memory import SharedMemory
from typing import Deque, Iterator, Optional

from .models import MAIN, CommandMessage, SensorData

SHM_SIZE = 1024


class SharedReading:
    """The most recent reading, shared between processes under a lock."""

    def __init__(self, name: str, create: bool = False) -> None:
        self.name = name
        if create:
            try:
                shm = SharedMemory(name=name, create=True, size=SHM_SIZE)
            except FileExistsError:
                shm = SharedMemory(name=name)
        else:
            shm = SharedMemory(name=name)
        self._shm = shm
        self._lock_path = os.path.join(
            tempfile.gettempdir(), f"{name.lstrip('/')}.lock"
        )
        try:
            self._lock_file = open(self._lock_path, "a+b")
        except BaseException:
            shm.close()
            raise
        self._thread_lock = threading.Lock()
        self._closed = False

    @contextmanager
    def _locked(self) -> Iterator[None]:
        if self._closed:
            raise ValueError("shared reading is closed")
        with self._thread_lock:
            fcntl.flock(self._lock_file.fileno(), fcntl.LOCK_EX)
            try:
                yield
            finally:
                fcntl.flock(self._lock_file.fileno(), fcntl.LOCK_UN)

    def write(self, reading: SensorData) -> None:
        """Replace the stored reading."""
        raw = reading.to_bytes()
        with self._locked():
            self._shm.buf[: len(raw)] = raw

    def read(self) -> SensorData:
        """Return the stored reading; a fresh block reads as zeros."""
        with self._locked():
            raw = bytes(self._shm.buf[: SensorData.SIZE])
        return SensorData.from_bytes(raw)

    def close(self) -> None:
        """Detach from the block; other processes keep it."""
        if self._closed:
            return
        self._closed = True
        self._shm.close()
        self._lock_file.close()

    def unlink(self) -> None:
        """Remove the block and its lock from the system."""
        try:
            self._shm.unlink()
        except FileNotFoundError:
            pass
        try:
            os.remove(self._lock_path)
        except FileNotFoundError:
            pass

    def __enter__(self) -> SharedReading:
        return self

    def __exit__(self, *args) -> None:
        self.close()


class CommandQueue:
    """Typed command records passed to the process that owns the queue.

    The owner (``create=True``) binds the socket at ``path`` and may receive;
    anyone may send. Receiving follows the usual typed-queue rules: type 0
    takes the oldest message, a positive type the oldest message of that
    type, a negative type the oldest message of the lowest type not above
    its magnitude.
    """

    def __init__(self, path, create: bool = False) -> None:
        self.path = os.fspath(path)
        self._owner = create
        self._pending: Deque[CommandMessage] = deque()
        self._closed = False
        self._sock = socket.socket(socket.AF_UNIX, socket.SOCK_DGRAM)
        try:
            if create:
                self._bind()
            elif not os.path.exists(self.path):
                raise FileNotFoundError(errno.ENOENT, "no command queue", self.path)
        except BaseException:
            self._sock.close()
            raise

    def _bind(self) -> None:
        try:
            self._sock.bind(self.path)
            return
        except OSError as exc:
            if exc.errno != errno.EADDRINUSE:
                raise
        probe = socket.socket(socket.AF_UNIX, socket.SOCK_DGRAM)
        try:
            probe.connect(self.path)
        except ConnectionRefusedError:
            # Left behind by an owner that is gone: take it over.
            os.remove(self.path)
            self._sock.bind(self.path)
            return
        finally:
            probe.close()
        raise FileExistsError(errno.EEXIST, "command queue already owned", self.path)

    def send(self, text: str, msg_type: int = MAIN) -> None:
        """Queue a command for the owner."""
        if self._closed:
            raise ValueError("command queue is closed")
        message = CommandMessage(text, msg_type)
        self._sock.sendto(message.to_bytes(), self.path)

    def receive(
        self, msg_type: int = MAIN, timeout: Optional[float] = None
    ) -> CommandMessage:
        """Take the next matching message, waiting up to ``timeout`` seconds.

        Raises TimeoutError when nothing matching arrives in time.
        """
        if self._closed:
            raise ValueError("command queue is closed")
        if not self._owner:
            raise RuntimeError("only the queue's owner can receive")
        deadline = None if timeout is None else time.monotonic() + timeout
        while True:
            self._drain()
            message = self._take(msg_type)
            if message is not None:
                return message
            remaining = None
            if deadline is not None:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    raise TimeoutError("no matching command arrived")
            select.select([self._sock], [], [], remaining)

    def _drain(self) -> None:
        while True:
            try:
                data = self._sock.recv(CommandMessage.SIZE * 2, socket.MSG_DONTWAIT)
            except BlockingIOError:
                return
            try:
                self._pending.append(CommandMessage.from_bytes(data))
            except ValueError:
                continue

    def _take(self, msg_type: int) -> Optional[CommandMessage]:
        candidates = list(enumerate(self._pending))
        if msg_type > 0:
            candidates = [(i, m) for i, m in candidates if m.msg_type == msg_type]
        elif msg_type < 0:
            candidates = [(i, m) for i, m in candidates if m.msg_type <= -msg_type]
            if candidates:
                lowest = min(m.msg_type for _, m in candidates)
                candidates = [(i, m) for i, m in candidates if m.msg_type == lowest]
        if not candidates:
            return None
        index, message = candidates[0]
        del self._pending[index]
        return message

    def close(self) -> None:
        """Close the socket; the owner also removes the queue."""
        if self._closed:
            return
        self._closed = True
        self._sock.close()
        if self._owner:
            try:
                os.remove(self.path)
            except FileNotFoundError:
                pass

    def __enter__(self) -> CommandQueue:
        return self

    def __exit__(self, *args) -> None:
        self.close()