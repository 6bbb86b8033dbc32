"""Virtual serial cable joining a transmitter and a receiver through socat pseudo-terminals."""

from __future__ import annotations

import os
import subprocess
import sys
import termios
import time
from contextlib import ExitStack, suppress

from .cable_core import (
    HELP_TEXT,
    RX_DEVICE,
    RX_EMULATOR,
    TX_DEVICE,
    TX_EMULATOR,
    Cable,
)

_UNRELIABLE_LAG_NS = 1_000_000_000
_STDIN_CHUNK = 2048
_RT_PRIORITY = 50


def help_text():
    """Return the text describing the interactive commands."""
    return HELP_TEXT


def start_socat(device, emulator):
    """Start socat linking ``device`` to ``emulator`` as a raw pseudo-terminal pair."""
    return subprocess.Popen(
        [
            "socat",
            "-dd",
            f"PTY,link={device},mode=777,raw,echo=0",
            f"PTY,link={emulator},mode=777,raw,echo=0",
        ]
    )


def open_emulator_port(path):
    """Open ``path`` as a raw, non-blocking port.

    Returns ``(fd, saved_settings)``; raises OSError on failure.
    """
    fd = os.open(path, os.O_RDWR | os.O_NONBLOCK | os.O_NOCTTY)
    try:
        saved = termios.tcgetattr(fd)
        speed = termios.B9600
        cflag = speed | termios.CS8 | termios.CLOCAL | termios.CREAD
        cc = [0] * len(saved[6])
        termios.tcflush(fd, termios.TCIOFLUSH)
        termios.tcsetattr(
            fd, termios.TCSANOW, [termios.IGNPAR, 0, cflag, 0, speed, speed, cc]
        )
    except termios.error as exc:
        os.close(fd)
        raise OSError(f"{path}: {exc}") from exc
    return fd, saved


def _read_byte(fd):
    try:
        data = os.read(fd, 1)
    except OSError:
        return None
    return data[0] if data else None


def _write_byte(fd, byte):
    with suppress(BlockingIOError):
        os.write(fd, bytes((byte,)))


def run(cable, fd_tx, fd_rx, commands):
    """Move bytes between the two ends, one per byte time, until ``quit``.

    ``commands`` is called once per byte time and returns the next command
    line, or ``None`` when there is none.
    """
    next_tx = time.monotonic_ns()
    warned = False
    while cable.running:
        now = time.monotonic_ns()
        if now - next_tx >= _UNRELIABLE_LAG_NS and not warned:
            print(
                "UNRELIABLE RATE: Could not keep up, timeDiff exceeded 1s\n"
                "No further warnings will be issued"
            )
            warned = True
        next_tx += cable.delay_ns
        wait_ns = next_tx - now

        to_rx, to_tx = cable.step(_read_byte(fd_tx), _read_byte(fd_rx))
        if to_rx is not None:
            _write_byte(fd_rx, to_rx)
        if to_tx is not None:
            _write_byte(fd_tx, to_tx)

        line = commands()
        if line is not None:
            print(cable.handle_command(line))

        if wait_ns > 0:
            time.sleep(wait_ns / 1e9)


def _stdin_commands(fd):
    def read():
        try:
            data = os.read(fd, _STDIN_CHUNK)
        except BlockingIOError:
            return None
        return data.decode(errors="replace") if data else None

    return read


def _stop(process):
    process.terminate()
    process.wait()


def _close_port(fd, saved):
    try:
        termios.tcsetattr(fd, termios.TCSANOW, saved)
    except termios.error as exc:
        print(f"tcsetattr: {exc}", file=sys.stderr)
    finally:
        os.close(fd)


def _set_rt_priority():
    try:
        os.sched_setscheduler(0, os.SCHED_FIFO, os.sched_param(_RT_PRIORITY))
    except (OSError, AttributeError) as exc:
        print(f"Could not set realtime priority: {exc}", file=sys.stderr)


def main(argv=None):
    """Start the virtual cable and run it until the ``quit`` command."""
    print()
    with ExitStack() as stack:
        for device, emulator in ((TX_DEVICE, TX_EMULATOR), (RX_DEVICE, RX_EMULATOR)):
            stack.callback(_stop, start_socat(device, emulator))
            time.sleep(1)
            print()

        print(help_text(), end="")

        fds = []
        for label, emulator in (("Tx", TX_EMULATOR), ("Rx", RX_EMULATOR)):
            try:
                fd, saved = open_emulator_port(emulator)
            except OSError as exc:
                print(f"Opening {label} emulator serial port: {exc}", file=sys.stderr)
                return 1
            stack.callback(_close_port, fd, saved)
            fds.append(fd)
        fd_tx, fd_rx = fds

        stdin_fd = sys.stdin.fileno()
        stack.callback(os.set_blocking, stdin_fd, os.get_blocking(stdin_fd))
        os.set_blocking(stdin_fd, False)

        cable = Cable()
        print(cable.handle_command("baud 9600"))
        _set_rt_priority()
        print("\nCable ready\n")
        try:
            run(cable, fd_tx, fd_rx, _stdin_commands(stdin_fd))
        finally:
            cable.handle_command("endlog")
    return 0


if __name__ == "__main__":
    sys.exit(main())