# sensorhub

A small gateway server for a temperature and humidity sensor node. It runs
on POSIX systems only, because it uses Unix domain sockets and `fcntl` file
locks.

A sensor node connects over TCP and sends readings. Each packet the server
receives is decoded as two little-endian 32-bit floats, temperature first and
humidity second; bytes past the first eight are ignored and missing bytes
count as zero. The server keeps the latest reading in a named shared memory
block, where other local programs can read it. It also takes short text
commands from a local command queue and forwards them, as raw UTF-8 bytes
with no separator, to the connected node.

## Installation

```
pip install .
```

## Running the server

```
sensorhub
```

Options:

- `--host` address to listen on (default `0.0.0.0`)
- `--port` TCP port (default `8888`)
- `--queue` path of the command queue socket (default `sensorhub.cmd` in the
  system temporary directory)
- `--shm` name of the shared reading block (default `sensorhub`)

The server prints `Server running on port N...`, then serves one node at a
time; when the node disconnects it waits for the next one. It stops on
Ctrl-C or SIGTERM, prints `All quit`, and removes its command queue and its
shared memory block. Progress is logged to standard error.

## Using the pieces from Python

### Readings (`sensorhub.models`)

```python
from sensorhub.models import SensorData

reading = SensorData.from_bytes(payload)
print(reading.temperature, reading.humidity)
payload = reading.to_bytes()   # 8 bytes
```

`CommandMessage(text, msg_type=1)` is the record carried on the command
queue: a 64-bit type followed by a 32-byte NUL-padded text field. The text
may be at most 31 bytes of UTF-8 and may not contain NUL; the type must be
positive. Anything else raises `ValueError`.

### Reading the latest published value (`sensorhub.ipc.SharedReading`)

```python
from sensorhub.ipc import SharedReading

with SharedReading("sensorhub", create=False) as shared:
    print(shared.read())
```

`read()` and `write(reading)` take an exclusive lock (a lock file named
after the block in the temporary directory), so readers never see half a
reading. A freshly created block reads as zeros. `close()` detaches;
`unlink()` removes the block and its lock file.

### Sending a command to the node (`sensorhub.ipc.CommandQueue`)

```python
from sensorhub.ipc import CommandQueue
from sensorhub.server import DEFAULT_QUEUE_PATH

with CommandQueue(DEFAULT_QUEUE_PATH, create=False) as queue:
    queue.send("data_on", 1)
```

Opening a queue with `create=False` raises `FileNotFoundError` if no server
owns it. The owner (`create=True`) is the only one that may call
`receive(msg_type, timeout)`, which raises `TimeoutError` when nothing
matching arrives. A type of 0 takes the oldest message, a positive type the
oldest of that type, and a negative type the oldest of the lowest type not
above its magnitude. The server reads type 1 only.

### Buffer (`sensorhub.fifo.Fifo`)

A first-in, first-out buffer with `put`, `get` (raises `IndexError` when
empty), `is_empty`, `len()` and non-destructive iteration. It does no
locking; the server guards it with its own conditions.

## What this package does not do

- It does not talk to sensor hardware or drive a display; it only receives
  readings that a node sends over TCP.
- It has no interactive tool for sending commands or watching readings; use
  `CommandQueue.send` and `SharedReading.read` from your own code.
- It does not interpret commands; any text is forwarded to the node as is.

## Tests

```
pip install .[test]
pytest
```