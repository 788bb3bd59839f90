"""Run-state control for the file service: pause, resume, console commands, disk stats."""

from __future__ import annotations

import shutil
import threading
from enum import Enum

_MIB = 1024 * 1024

PAUSED_MESSAGE = "Service paused. All API requests will return 503 status."
RESUMED_MESSAGE = "Service resumed. API requests will be processed normally."
STOPPING_MESSAGE = "Stopping server..."
UNKNOWN_COMMAND_MESSAGE = "Unknown command. Available commands: exit, pause, resume"


class ServiceState(Enum):
    """Lifecycle states of the service."""

    RUNNING = "running"
    PAUSED = "paused"
    STOPPED = "stopped"


class ServiceControl:
    """Thread-safe holder of the service's run state.

    ``state`` is the current :class:`ServiceState`; ``stop_event`` is set once
    the service has been asked to stop.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.state = ServiceState.RUNNING
        self.stop_event = threading.Event()

    def pause(self) -> bool:
        """Pause a running service; return whether the state changed."""
        with self._lock:
            if self.state is not ServiceState.RUNNING:
                return False
            self.state = ServiceState.PAUSED
            return True

    def resume(self) -> bool:
        """Resume a paused service; return whether the state changed."""
        with self._lock:
            if self.state is not ServiceState.PAUSED:
                return False
            self.state = ServiceState.RUNNING
            return True

    def _stop(self) -> None:
        with self._lock:
            self.state = ServiceState.STOPPED
        self.stop_event.set()

    def status(self) -> dict:
        """Return the status document served at ``/service/status``."""
        with self._lock:
            state = self.state
        if state in (ServiceState.RUNNING, ServiceState.PAUSED):
            state_name = state.value
        else:
            state_name = "unknown"
        return {
            "status": "paused" if state is ServiceState.PAUSED else "running",
            "state": state_name,
        }


def handle_command(control: ServiceControl, command: str) -> str:
    """Apply one console command to ``control`` and return the reply to print.

    ``exit`` stops the service, ``pause`` and ``resume`` toggle request
    handling; anything else is reported as unknown.
    """
    command = command.rstrip("\r\n")
    if command == "exit":
        control._stop()
        return STOPPING_MESSAGE
    if command == "pause":
        control.pause()
        return PAUSED_MESSAGE
    if command == "resume":
        control.resume()
        return RESUMED_MESSAGE
    return UNKNOWN_COMMAND_MESSAGE


def disk_stats(path) -> dict:
    """Return total, free and used space of the disk holding ``path``, in MiB."""
    usage = shutil.disk_usage(path)
    return {
        "total_mb": usage.total // _MIB,
        "free_mb": usage.free // _MIB,
        "used_mb": (usage.total - usage.free) // _MIB,
    }