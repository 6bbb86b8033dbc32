"""Simulated serial cable: byte timing, propagation delay, noise and traffic logging."""

from __future__ import annotations

import random
import re

from .serial_port import SUPPORTED_BAUD_RATES

TX_DEVICE = "/dev/ttyS10"
RX_DEVICE = "/dev/ttyS11"
TX_EMULATOR = "/dev/emulatorTx"
RX_EMULATOR = "/dev/emulatorRx"

DEFAULT_BAUD_RATE = 9600
MAX_PROPAGATION_DELAY_US = 1_000_000
_BIT_TIMES_PER_BYTE_NS = 1.0e10  # 10 bit times per byte (8-N-1), in nanoseconds

HELP_TEXT = (
    "\n\n"
    f"Transmitter must open {TX_DEVICE}\n"
    f"Receiver must open {RX_DEVICE}\n"
    "\n"
    "The cable program is sensible to the following interactive commands:\n"
    "--- help         : show this help\n"
    "--- on           : connect the cable and data is exchanged (default state)\n"
    "--- off          : disconnect the cable disabling data to be exchanged\n"
    "--- ber <ber>    : add noise to data bits at a specified BER (default=0)\n"
    "--- baud <rate>  : set baud rate, between 1200 and 115200 (default=9600)\n"
    "                   note that 10 bits are sent per byte (8-N-1)\n"
    "--- prop <delay> : set the propagation delay in usec (0-1000000, default=0)\n"
    "                   will be approximated to an integer multiple of the byte\n"
    "                   delay (10 / baud_rate)\n"
    "--- log <file>   : log transmitted data to file\n"
    "--- endlog       : stop logging transmitted data\n"
    "--- quit         : terminate the program\n"
    "\n"
    "IMPORTANT: Changing the baud rate or propagation delay while a transmission is\n"
    "           ongoing will result in losses.\n"
    "\n"
)

_LOG_HEADER = "Tx->Rx | Rx->Tx\n"
_IDLE_MARK = "---------------\n"
_LEADING_FLOAT = re.compile(
    r"\s*([+-]?(?:\d+\.?\d*(?:[eE][+-]?\d+)?|\.\d+(?:[eE][+-]?\d+)?))"
)
_LEADING_UINT = re.compile(r"\s*\+?(\d+)")


def byte_delay_ns(baud):
    """Time in nanoseconds to send one byte (10 bit times) at ``baud``."""
    if baud <= 0:
        raise ValueError("baud rate must be positive")
    return int(_BIT_TIMES_PER_BYTE_NS / baud)


def bytes_in_flight(prop_delay_us, delay_ns):
    """Number of byte slots that best approximates the propagation delay."""
    if delay_ns <= 0:
        raise ValueError("byte delay must be positive")
    if prop_delay_us < 0:
        raise ValueError("propagation delay must not be negative")
    delay = 1000 * prop_delay_us
    count, remainder = divmod(delay, delay_ns)
    if remainder > delay_ns // 2:
        count += 1
    return count


def byte_error_rate(ber):
    """Probability that a byte holds at least one bit error at bit error rate ``ber``."""
    return 1.0 - (1.0 - ber) ** 8


def flip_random_bit(byte, rng):
    """Return ``byte`` with one randomly chosen bit inverted."""
    return byte ^ (1 << rng.randrange(8))


def _hex(byte):
    return "  " if byte is None else f"{byte:02X}"


def _leading_float(text):
    match = _LEADING_FLOAT.match(text)
    return float(match.group(1)) if match else None


def _leading_uint(text):
    match = _LEADING_UINT.match(text)
    return int(match.group(1)) if match else None


class DelayLine:
    """Fixed-length ring of byte slots; each push returns the slot falling out.

    A byte pushed now comes back ``size - 1`` pushes later; empty slots
    are ``None``.
    """

    def __init__(self, size):
        if size < 1:
            raise ValueError("delay line needs at least one slot")
        self._slots = [None] * size
        self._index = 0

    def push(self, byte):
        self._slots[self._index] = byte
        self._index = (self._index + 1) % len(self._slots)
        return self._slots[self._index]


class TrafficLog:
    """Writes the bytes entering and leaving the cable, one line per byte time."""

    def __init__(self, stream):
        self._stream = stream
        self._idle = False
        stream.write(_LOG_HEADER)

    def record(self, tx_in, tx_out, rx_in, rx_out):
        """Log one byte time; runs of idle byte times collapse to one mark."""
        if tx_in is None and tx_out is None and rx_in is None and rx_out is None:
            if not self._idle:
                self._stream.write(_IDLE_MARK)
                self._idle = True
            return
        self._stream.write(
            f"{_hex(tx_in)}  {_hex(tx_out)} | {_hex(rx_in)}  {_hex(rx_out)}\n"
        )
        self._idle = False

    def cable_off(self):
        self._stream.write("CABLE OFF\n")

    def close(self):
        self._stream.close()


class Cable:
    """State of the virtual cable between the transmitter and the receiver."""

    def __init__(self, rng=None):
        self.rng = rng if rng is not None else random.Random()
        self.cable_on = True
        self.ber = 0.0
        self.byte_er = 0.0
        self.prop_delay_us = 0
        self.log = None
        self.running = True
        self.set_baud_rate(DEFAULT_BAUD_RATE)

    def set_baud_rate(self, baud):
        """Change the byte timing; returns the propagation delay actually applied, in usec."""
        if baud not in SUPPORTED_BAUD_RATES:
            raise ValueError(f"unsupported baud rate {baud}")
        self.baud = baud
        self.delay_ns = byte_delay_ns(baud)
        return self._reset_delay_lines()

    def set_propagation_delay(self, prop_delay_us):
        """Change the propagation delay; returns the delay actually applied, in usec."""
        if not 0 <= prop_delay_us <= MAX_PROPAGATION_DELAY_US:
            raise ValueError("propagation delay out of range")
        self.prop_delay_us = prop_delay_us
        return self._reset_delay_lines()

    def _reset_delay_lines(self):
        in_flight = bytes_in_flight(self.prop_delay_us, self.delay_ns)
        self._tx2rx = DelayLine(in_flight + 1)
        self._rx2tx = DelayLine(in_flight + 1)
        self.actual_prop_delay_us = in_flight * self.delay_ns // 1000
        return self.actual_prop_delay_us

    def _corrupt(self, byte):
        if byte is None or self.byte_er == 0.0:
            return byte
        if self.rng.random() < self.byte_er:
            return flip_random_bit(byte, self.rng)
        return byte

    def step(self, from_tx, from_rx):
        """Advance one byte time.

        ``from_tx`` and ``from_rx`` are the bytes read from each end, or
        ``None``. Returns ``(to_rx, to_tx)``, the bytes to deliver.
        """
        if not self.cable_on:
            from_tx = from_rx = None
        to_rx = self._tx2rx.push(from_tx)
        to_tx = self._rx2tx.push(from_rx)
        if self.cable_on:
            to_rx = self._corrupt(to_rx)
            to_tx = self._corrupt(to_tx)
        else:
            to_rx = to_tx = None
        if self.log is not None:
            self.log.record(from_tx, to_rx, from_rx, to_tx)
        return to_rx, to_tx

    def _delay_message(self):
        return (
            f"PROPAGATION DELAY SET TO {self.actual_prop_delay_us} usec "
            f"(DESIRED = {self.prop_delay_us} usec)"
        )

    def _close_log(self):
        if self.log is not None:
            self.log.close()
            self.log = None

    def _start_log(self, filename):
        self._close_log()
        try:
            stream = open(filename, "w")
        except OSError:
            return f"ERROR OPENING FILE {filename}, NOT LOGGING"
        self.log = TrafficLog(stream)
        return f"LOGGING TO FILE {filename}"

    def _set_ber(self, text):
        ber = _leading_float(text)
        if ber is None or not 0.0 <= ber < 1.0:
            shown = "nan" if ber is None else f"{ber:f}"
            return f"BAD BER VALUE {shown} (MUST BE 0 <= BER < 1.0)"
        self.ber = ber
        self.byte_er = byte_error_rate(ber)
        message = f"BER SET TO {ber:f}"
        if ber > 0.01:
            message += "\n   ACTUAL BER WILL BE LOWER THAN DEFINED FOR VALUES ABOVE 0.01"
        return message

    def _set_baud(self, text):
        baud = _leading_uint(text)
        if baud not in SUPPORTED_BAUD_RATES:
            rates = ", ".join(str(rate) for rate in SUPPORTED_BAUD_RATES[:-1])
            return (
                "UNSUPPORTED BAUD RATE: must be one of "
                f"{rates} or {SUPPORTED_BAUD_RATES[-1]}"
            )
        self.set_baud_rate(baud)
        return f"BAUD RATE: {baud}\n{self._delay_message()}"

    def _set_prop(self, text):
        delay = _leading_uint(text)
        if delay is None or delay > MAX_PROPAGATION_DELAY_US:
            return "BAD OR OUT OF RANGE PROPAGATION DELAY"
        self.set_propagation_delay(delay)
        return self._delay_message()

    def handle_command(self, line):
        """Apply one interactive command and return the message to show."""
        line = line.removesuffix("\n")
        if line == "off":
            if self.cable_on and self.log is not None:
                self.log.cable_off()
            self.cable_on = False
            return "CONNECTION OFF"
        if line == "on":
            self.cable_on = True
            return "CONNECTION ON"
        if line.startswith("ber "):
            return self._set_ber(line[4:])
        if line.startswith("baud "):
            return self._set_baud(line[5:])
        if line.startswith("prop "):
            return self._set_prop(line[5:])
        if line.startswith("log "):
            return self._start_log(line[4:])
        if line == "endlog":
            self._close_log()
            return "NOT LOGGING"
        if line == "quit":
            self.running = False
            return "END OF THE PROGRAM"
        if line == "help":
            return HELP_TEXT
        return "BAD COMMAND OR MISSING PARAMETERS"