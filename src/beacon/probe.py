"""Foreground-window probes for the supported desktop platforms."""

from __future__ import annotations

import logging
import re
import subprocess
import sys
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from datetime import datetime, timedelta
from typing import Optional, Protocol

import psutil

from .models import WindowObservation

logger = logging.getLogger(__name__)


class ProbeError(RuntimeError):
    """The foreground window could not be determined."""


class WindowProbe(Protocol):
    def get_active_window(self) -> tuple[Optional[str], Optional[str]]:
        ...


def _process_name(pid: int) -> Optional[str]:
    try:
        return psutil.Process(pid).name() if pid else None
    except (psutil.Error, ProcessLookupError):
        return None


class WindowsActiveWindowProbe:
    """Retrieves the foreground window title and process name."""

    def __init__(self) -> None:
        import ctypes

        self._ctypes = ctypes
        self._user32 = ctypes.windll.user32  # type: ignore[attr-defined]

    def get_active_window(self) -> tuple[Optional[str], Optional[str]]:
        from ctypes import wintypes

        ctypes = self._ctypes
        hwnd = self._user32.GetForegroundWindow()
        if not hwnd:
            return None, None

        length = self._user32.GetWindowTextLengthW(hwnd)
        buffer = ctypes.create_unicode_buffer(length + 1)
        self._user32.GetWindowTextW(hwnd, buffer, length + 1)
        window_title = buffer.value.strip() or None

        pid = wintypes.DWORD()
        self._user32.GetWindowThreadProcessId(hwnd, ctypes.byref(pid))
        return _process_name(pid.value), window_title


class X11ActiveWindowProbe:
    """Reads the active window through ``xprop`` on X11 desktops."""

    _WINDOW_ID = re.compile(r"0x[0-9a-fA-F]+")
    _PID = re.compile(r"_NET_WM_PID\(CARDINAL\)\s*=\s*(\d+)")
    _NAME = re.compile(r'(?:_NET_WM_NAME|WM_NAME)\([A-Z_0-9]+\)\s*=\s*"(.*)"')

    def __init__(self, timeout: float = 1.0) -> None:
        self._timeout = timeout

    def get_active_window(self) -> tuple[Optional[str], Optional[str]]:
        try:
            root = self._xprop("-root", "_NET_ACTIVE_WINDOW")
            match = self._WINDOW_ID.search(root)
            if not match or int(match.group(0), 16) == 0:
                return None, None
            props = self._xprop("-id", match.group(0), "_NET_WM_PID", "_NET_WM_NAME", "WM_NAME")
        except (subprocess.SubprocessError, OSError) as exc:
            raise ProbeError(f"xprop failed: {exc}") from exc

        pid_match = self._PID.search(props)
        name_match = self._NAME.search(props)
        process_name = _process_name(int(pid_match.group(1))) if pid_match else None
        title = name_match.group(1).strip() if name_match else None
        return process_name, title or None

    def _xprop(self, *args: str) -> str:
        result = subprocess.run(
            ["xprop", *args],
            capture_output=True,
            text=True,
            timeout=self._timeout,
            check=False,
        )
        if result.returncode != 0:
            raise ProbeError(result.stderr.strip() or "xprop returned an error")
        return result.stdout


def create_default_probe() -> WindowProbe:
    if sys.platform == "win32":
        return WindowsActiveWindowProbe()
    return X11ActiveWindowProbe()


class TimedProbe:
    """Runs a probe on a worker thread and gives up after ``timeout``.

    A probe that hangs is abandoned; its worker finishes in the background
    and the next observation is taken on a fresh worker. After :meth:`close`
    the next :meth:`observe` starts a new worker pool.
    """

    def __init__(self, probe: WindowProbe, timeout: timedelta = timedelta(seconds=3)) -> None:
        self._probe = probe
        self._timeout = timeout
        self._executor: Optional[ThreadPoolExecutor] = None

    def observe(self, now: Optional[datetime] = None) -> Optional[WindowObservation]:
        """Return the current foreground window, or ``None`` if unavailable."""
        if self._executor is None:
            self._executor = ThreadPoolExecutor(max_workers=2, thread_name_prefix="beacon-probe")
        future = self._executor.submit(self._probe.get_active_window)
        try:
            process_name, title = future.result(timeout=self._timeout.total_seconds())
        except FutureTimeoutError:
            logger.debug("Window probe timed out after %.1fs", self._timeout.total_seconds())
            future.cancel()
            return None
        except Exception as exc:
            logger.debug("Window probe failed: %s", exc)
            return None
        return WindowObservation(
            process_name=process_name or "unknown",
            title=title or "",
            captured_at=now or datetime.now(),
        )

    def close(self) -> None:
        executor, self._executor = self._executor, None
        if executor is not None:
            executor.shutdown(wait=False, cancel_futures=True)
