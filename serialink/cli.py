"""Command-line entry point for the file transfer application."""

from __future__ import annotations

import logging
import re
import sys
from dataclasses import dataclass

from .application_layer import PacketError, application_layer
from .link_layer import LinkLayerError

N_TRIES = 3
TIMEOUT = 4

_BAUD_RATES = (1200, 1800, 2400, 4800, 9600, 19200, 38400, 57600, 115200)
_PROG = "serialink"
_LEADING_INT = re.compile(r"\s*([+-]?\d+)")


@dataclass(frozen=True)
class _Arguments:
    serial_port: str
    baud_rate: int
    role: str
    filename: str


def _leading_int(text):
    match = _LEADING_INT.match(text)
    return int(match.group(1)) if match else 0


def parse_arguments(argv):
    """Parse ``serial_port baud_rate role filename``; exit on bad input."""
    argv = list(argv)
    if len(argv) < 4:
        print(f"Usage: {_PROG} /dev/ttySxx baudrate tx|rx filename")
        raise SystemExit(1)
    serial_port, baud_text, role, filename = argv[:4]
    baud_rate = _leading_int(baud_text)
    if baud_rate not in _BAUD_RATES:
        rates = ", ".join(str(rate) for rate in _BAUD_RATES)
        print(f"Unsupported baud rate (must be one of {rates})")
        raise SystemExit(2)
    if role not in ("tx", "rx"):
        print('ERROR: Role must be "tx" or "rx"')
        raise SystemExit(3)
    return _Arguments(serial_port, baud_rate, role, filename)


def main(argv=None):
    """Run the transfer described by the command line; return the exit status."""
    if argv is None:
        argv = sys.argv[1:]
    arguments = parse_arguments(argv)
    logging.basicConfig(level=logging.INFO, format="%(message)s")
    print(
        "Starting link-layer protocol application\n"
        f"  - Serial port: {arguments.serial_port}\n"
        f"  - Role: {arguments.role}\n"
        f"  - Baudrate: {arguments.baud_rate}\n"
        f"  - Number of tries: {N_TRIES}\n"
        f"  - Timeout: {TIMEOUT}\n"
        f"  - Filename: {arguments.filename}"
    )
    try:
        application_layer(
            arguments.serial_port,
            arguments.role,
            arguments.baud_rate,
            N_TRIES,
            TIMEOUT,
            arguments.filename,
        )
    except (LinkLayerError, PacketError, OSError) as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())