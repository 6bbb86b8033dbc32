"""Frame layout, byte stuffing and receive state machines of the link protocol."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum, IntEnum, auto
from functools import reduce
from operator import xor

FLAG = 0x7E
ESC = 0x7D
ESCAPE_MASK = 0x20


class Address(IntEnum):
    """Address field values."""

    TX = 0x03  # commands from the transmitter, replies from the receiver
    RX = 0x01  # commands from the receiver, replies from the transmitter


class Control(IntEnum):
    """Control field values."""

    SET = 0x03
    UA = 0x07
    DISC = 0x0B
    INF0 = 0x00
    INF1 = 0x80
    RR0 = 0xAA
    RR1 = 0xAB
    REJ0 = 0x54
    REJ1 = 0x55


class FrameKind(Enum):
    """What a receiver recognised."""

    SUPERVISION = auto()
    INFORMATION = auto()
    DUPLICATE = auto()
    REJECTED = auto()


@dataclass(frozen=True)
class FrameResult:
    kind: FrameKind
    address: int
    control: int
    payload: bytes = b""


def information_control(sequence):
    """Control byte of an information frame with the given sequence number."""
    return Control.INF0 if sequence == 0 else Control.INF1


def receiver_ready(sequence):
    """RR control byte acknowledging up to the given sequence number."""
    return Control.RR0 if sequence == 0 else Control.RR1


def reject(sequence):
    """REJ control byte for the given sequence number."""
    return Control.REJ0 if sequence == 0 else Control.REJ1


def stuff(data):
    """Escape FLAG and ESC bytes so they cannot appear inside a frame."""
    out = bytearray()
    for byte in data:
        if byte in (FLAG, ESC):
            out += bytes((ESC, byte ^ ESCAPE_MASK))
        else:
            out.append(byte)
    return bytes(out)


def block_check(data):
    """XOR of all bytes, as used for the data check byte."""
    return reduce(xor, data, 0)


def build_supervision(address, control):
    """Build a five-byte supervision frame."""
    return bytes((FLAG, address, control, address ^ control, FLAG))


def build_information(payload, sequence):
    """Build a stuffed information frame carrying ``payload``."""
    payload = bytes(payload)
    control = information_control(sequence)
    header = bytes((FLAG, Address.TX, control, Address.TX ^ control))
    body = stuff(payload + bytes((block_check(payload),)))
    return header + body + bytes((FLAG,))


class _State(Enum):
    START = auto()
    FLAG_OK = auto()
    A_OK = auto()
    C_OK = auto()
    BCC_OK = auto()


class SupervisionReceiver:
    """Recognises supervision frames whose (address, control) pair is accepted.

    Bytes are fed one at a time; ``feed`` returns a FrameResult when a
    complete accepted frame has been seen, otherwise ``None``.
    """

    def __init__(self, accepted):
        self._accepted = frozenset((int(a), int(c)) for a, c in accepted)
        if not self._accepted:
            raise ValueError("at least one (address, control) pair is required")
        self._addresses = frozenset(a for a, _ in self._accepted)
        self.reset()

    def reset(self):
        """Discard any partially received frame."""
        self._state = _State.START
        self._address = 0
        self._control = 0

    def feed(self, byte):
        state = self._state
        if state is _State.START:
            if byte == FLAG:
                self._state = _State.FLAG_OK
        elif state is _State.FLAG_OK:
            if byte in self._addresses:
                self._address = byte
                self._state = _State.A_OK
            elif byte != FLAG:
                self._state = _State.START
        elif state is _State.A_OK:
            if byte == FLAG:
                self._state = _State.FLAG_OK
            elif (self._address, byte) in self._accepted:
                self._control = byte
                self._state = _State.C_OK
            else:
                self._state = _State.START
        elif state is _State.C_OK:
            if byte == FLAG:
                self._state = _State.FLAG_OK
            elif byte == self._address ^ self._control:
                self._state = _State.BCC_OK
            else:
                self._state = _State.START
        elif state is _State.BCC_OK:
            if byte == FLAG:
                result = FrameResult(
                    FrameKind.SUPERVISION, self._address, self._control
                )
                self.reset()
                return result
            self._state = _State.START
        return None


class InformationReceiver:
    """Recognises information frames and checks their sequence and data.

    ``feed`` returns a FrameResult of kind INFORMATION for a good frame
    (``expected`` then flips), DUPLICATE for a frame with the other
    sequence number, REJECTED for a frame whose data check fails.
    """

    def __init__(self, expected=0):
        if expected not in (0, 1):
            raise ValueError("expected sequence number must be 0 or 1")
        self.expected = expected
        self.reset()

    def reset(self):
        """Discard any partially received frame."""
        self._state = _State.START
        self._control = 0
        self._data = bytearray()
        self._escape_next = False

    def feed(self, byte):
        state = self._state
        if state is _State.START:
            if byte == FLAG:
                self._state = _State.FLAG_OK
        elif state is _State.FLAG_OK:
            if byte == Address.TX:
                self._state = _State.A_OK
            elif byte != FLAG:
                self._state = _State.START
        elif state is _State.A_OK:
            if byte in (Control.INF0, Control.INF1):
                self._control = byte
                if byte >> 7 == self.expected:
                    self._state = _State.C_OK
                else:
                    self.reset()
                    return FrameResult(FrameKind.DUPLICATE, Address.TX, byte)
            elif byte == FLAG:
                self._state = _State.FLAG_OK
            else:
                self._state = _State.START
        elif state is _State.C_OK:
            if byte == Address.TX ^ self._control:
                self._data = bytearray()
                self._escape_next = False
                self._state = _State.BCC_OK
            elif byte == FLAG:
                self._state = _State.FLAG_OK
            else:
                self._state = _State.START
        elif state is _State.BCC_OK:
            if byte == FLAG:
                return self._finish()
            if byte == ESC:
                self._escape_next = True
            else:
                if self._escape_next:
                    byte ^= ESCAPE_MASK
                    self._escape_next = False
                self._data.append(byte)
        return None

    def _finish(self):
        control = self._control
        data = bytes(self._data)
        self.reset()
        if data and block_check(data[:-1]) == data[-1]:
            self.expected ^= 1
            return FrameResult(FrameKind.INFORMATION, Address.TX, control, data[:-1])
        return FrameResult(FrameKind.REJECTED, Address.TX, control)