"""Gateway server that publishes sensor readings and relays commands to a sensor node."""

__version__ = "0.1.0"
__all__ = ["fifo", "ipc", "models", "server"]