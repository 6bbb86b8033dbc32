"""Raw serial port access configured for byte-by-byte, non-canonical I/O."""

from __future__ import annotations

import os
import termios

_BAUD_FLAGS = {
    1200: termios.B1200,
    1800: termios.B1800,
    2400: termios.B2400,
    4800: termios.B4800,
    9600: termios.B9600,
    19200: termios.B19200,
    38400: termios.B38400,
    57600: termios.B57600,
    115200: termios.B115200,
}

SUPPORTED_BAUD_RATES = tuple(_BAUD_FLAGS)


class SerialPortError(OSError):
    """Raised when the serial port cannot be opened, configured or used."""


def baud_flag(baud_rate):
    """Return the termios speed constant for a supported baud rate."""
    try:
        return _BAUD_FLAGS[baud_rate]
    except KeyError:
        rates = ", ".join(str(rate) for rate in SUPPORTED_BAUD_RATES)
        raise SerialPortError(
            f"Unsupported baud rate (must be one of {rates})"
        ) from None


class SerialPort:
    """A serial port opened in raw 8N1 mode with non-waiting reads.

    Reads return immediately: ``read_byte`` yields ``None`` when no byte
    is pending. The original terminal settings are restored on close.
    """

    def __init__(self, path, baud_rate):
        self.path = path
        self.baud_rate = baud_rate
        flags = os.O_RDWR | os.O_NOCTTY | os.O_NONBLOCK
        try:
            fd = os.open(path, flags)
        except OSError as exc:
            raise SerialPortError(exc.errno, f"{path}: {exc.strerror}") from exc
        try:
            self._saved = self._configure(fd, baud_rate)
        except BaseException:
            os.close(fd)
            raise
        self._fd = fd

    @staticmethod
    def _configure(fd, baud_rate):
        try:
            saved = termios.tcgetattr(fd)
        except termios.error as exc:
            raise SerialPortError(f"tcgetattr: {exc}") from exc
        speed = baud_flag(baud_rate)
        cflag = speed | termios.CS8 | termios.CLOCAL | termios.CREAD
        cc = [0] * len(saved[6])
        settings = [termios.IGNPAR, 0, cflag, 0, speed, speed, cc]
        try:
            termios.tcflush(fd, termios.TCIOFLUSH)
            termios.tcsetattr(fd, termios.TCSANOW, settings)
        except termios.error as exc:
            raise SerialPortError(f"tcsetattr: {exc}") from exc
        try:
            os.set_blocking(fd, True)
        except OSError as exc:
            raise SerialPortError(exc.errno, f"fcntl: {exc.strerror}") from exc
        return saved

    @property
    def closed(self):
        return self._fd is None

    def fileno(self):
        """Return the underlying file descriptor."""
        return self._require_open()

    def _require_open(self):
        if self._fd is None:
            raise SerialPortError(f"{self.path}: port is closed")
        return self._fd

    def read_byte(self):
        """Return one received byte as an int, or ``None`` if none is pending."""
        fd = self._require_open()
        try:
            data = os.read(fd, 1)
        except OSError as exc:
            raise SerialPortError(exc.errno, f"read: {exc.strerror}") from exc
        return data[0] if data else None

    def write(self, data):
        """Write bytes to the port and return how many were written."""
        fd = self._require_open()
        try:
            return os.write(fd, bytes(data))
        except OSError as exc:
            raise SerialPortError(exc.errno, f"write: {exc.strerror}") from exc

    def close(self):
        """Restore the original settings and close the port."""
        if self._fd is None:
            return
        fd, self._fd = self._fd, None
        try:
            termios.tcsetattr(fd, termios.TCSANOW, self._saved)
        except termios.error as exc:
            raise SerialPortError(f"tcsetattr: {exc}") from exc
        finally:
            os.close(fd)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False