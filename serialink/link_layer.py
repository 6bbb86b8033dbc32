"""Stop-and-wait link protocol over a serial port."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from enum import Enum

from .frames import (
    Address,
    Control,
    FrameKind,
    InformationReceiver,
    SupervisionReceiver,
    build_information,
    build_supervision,
    receiver_ready,
    reject,
)
from .serial_port import SerialPort, SerialPortError

MAX_PAYLOAD_SIZE = 1000
"""Largest payload the application layer is expected to hand over."""

_log = logging.getLogger(__name__)


class Role(Enum):
    """Which end of the link this side plays."""

    TX = "tx"
    RX = "rx"


@dataclass
class LinkParameters:
    """Connection settings for one end of the link."""

    serial_port: str
    role: Role
    baud_rate: int = 9600
    n_retransmissions: int = 3
    timeout: float = 4


@dataclass
class Statistics:
    """Counters kept while the link is in use."""

    frames: int = 0
    retransmissions: int = 0


class LinkLayerError(Exception):
    """Raised when the link cannot be established, used or closed."""


class LinkLayer:
    """One end of the link.

    ``port`` is any object with ``read_byte()``, ``write(data)`` and
    ``close()``; when omitted, a SerialPort is opened on ``open()``.
    """

    def __init__(self, parameters, port=None):
        self.parameters = parameters
        self.statistics = Statistics()
        self._port = port
        self._is_open = False
        self._send_sequence = 0
        self._receiver = InformationReceiver()

    @property
    def is_open(self):
        return self._is_open

    # -- helpers ---------------------------------------------------------

    def _deadline(self):
        return time.monotonic() + self.parameters.timeout

    def _send(self, frame):
        remaining = memoryview(bytes(frame))
        while remaining:
            written = self._port.write(remaining)
            if written:
                remaining = remaining[written:]

    def _wait_for(self, receiver, deadline):
        """Feed incoming bytes to ``receiver`` until it yields a result.

        Returns ``None`` if ``deadline`` passes first; waits forever when
        ``deadline`` is ``None``.
        """
        while True:
            byte = self._port.read_byte()
            if byte is not None:
                result = receiver.feed(byte)
                if result is not None:
                    return result
            if deadline is not None and time.monotonic() >= deadline:
                return None

    def _timed_out(self, count):
        self.statistics.retransmissions += 1
        _log.warning("Timeout #%d", count)

    def _release_port(self):
        port, self._port = self._port, None
        self._is_open = False
        if port is not None:
            port.close()

    def _require_open(self):
        if not self._is_open:
            raise LinkLayerError("link is not open")

    # -- connection setup ------------------------------------------------

    def open(self):
        """Open the port and perform the SET/UA handshake."""
        if self._is_open:
            raise LinkLayerError("link is already open")
        if self._port is None:
            try:
                self._port = SerialPort(
                    self.parameters.serial_port, self.parameters.baud_rate
                )
            except SerialPortError as exc:
                raise LinkLayerError(str(exc)) from exc
        try:
            if self.parameters.role is Role.TX:
                self._connect_transmitter()
            else:
                self._connect_receiver()
        except BaseException:
            self._release_port()
            raise
        self._is_open = True
        _log.info("Successfully connected!")

    def _connect_transmitter(self):
        set_frame = build_supervision(Address.TX, Control.SET)
        reply = SupervisionReceiver([(Address.RX, Control.UA)])
        for attempt in range(1, self.parameters.n_retransmissions + 1):
            self._send(set_frame)
            reply.reset()
            if self._wait_for(reply, self._deadline()) is not None:
                return
            self._timed_out(attempt)
        raise LinkLayerError("Maximum number of retransmissions exceeded")

    def _connect_receiver(self):
        request = SupervisionReceiver([(Address.TX, Control.SET)])
        self._wait_for(request, None)
        self._send(build_supervision(Address.RX, Control.UA))

    # -- data transfer ---------------------------------------------------

    def write(self, data):
        """Send ``data`` in one information frame and wait for its acknowledgement.

        Returns the number of payload bytes sent.
        """
        self._require_open()
        data = bytes(data)
        sequence = self._send_sequence
        frame = build_information(data, sequence)
        acknowledged = receiver_ready(sequence ^ 1)
        responses = SupervisionReceiver(
            [(Address.TX, reject(sequence)), (Address.TX, acknowledged)]
        )
        timeouts = 0
        while timeouts < self.parameters.n_retransmissions:
            self._send(frame)
            responses.reset()
            result = self._wait_for(responses, self._deadline())
            if result is None:
                timeouts += 1
                self._timed_out(timeouts)
                continue
            if result.control == acknowledged:
                self.statistics.frames += 1
                self._send_sequence = sequence ^ 1
                return len(data)
            self.statistics.retransmissions += 1
        raise LinkLayerError("Maximum number of retransmissions exceeded")

    def read(self):
        """Wait for the next new information frame and return its payload."""
        self._require_open()
        receiver = self._receiver
        while True:
            result = self._wait_for(receiver, None)
            if result.kind is FrameKind.INFORMATION:
                self._send(
                    build_supervision(Address.TX, receiver_ready(receiver.expected))
                )
                return result.payload
            if result.kind is FrameKind.DUPLICATE:
                self._send(
                    build_supervision(Address.TX, receiver_ready(receiver.expected))
                )
            else:
                self._send(build_supervision(Address.TX, reject(receiver.expected)))

    # -- teardown --------------------------------------------------------

    def close(self, show_statistics=False):
        """Perform the DISC exchange, close the port and optionally print statistics."""
        self._require_open()
        if self.parameters.role is Role.TX:
            self._disconnect_transmitter()
        else:
            self._disconnect_receiver()
        self._release_port()
        _log.info("Successfully disconnected!")
        if show_statistics:
            print(f"Number of frames = {self.statistics.frames}")
            print(f"Number of retransmissions = {self.statistics.retransmissions}")

    def _give_up(self):
        self._release_port()
        raise LinkLayerError("Maximum number of retransmissions exceeded")

    def _disconnect_transmitter(self):
        disc = build_supervision(Address.TX, Control.DISC)
        reply = SupervisionReceiver([(Address.RX, Control.DISC)])
        timeouts = 0
        while True:
            self._send(disc)
            reply.reset()
            if self._wait_for(reply, self._deadline()) is not None:
                self._send(build_supervision(Address.RX, Control.UA))
                return
            timeouts += 1
            self._timed_out(timeouts)
            if timeouts >= self.parameters.n_retransmissions:
                self._give_up()

    def _disconnect_receiver(self):
        self._wait_for(SupervisionReceiver([(Address.TX, Control.DISC)]), None)
        disc = build_supervision(Address.RX, Control.DISC)
        reply = SupervisionReceiver(
            [(Address.TX, Control.DISC), (Address.RX, Control.UA)]
        )
        timeouts = 0
        while True:
            self._send(disc)
            reply.reset()
            result = self._wait_for(reply, self._deadline())
            if result is not None and result.control == Control.UA:
                return
            self.statistics.retransmissions += 1
            if result is None:
                timeouts += 1
                _log.warning("Timeout #%d", timeouts)
            if timeouts >= self.parameters.n_retransmissions:
                self._give_up()

    def __enter__(self):
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb):
        if not self._is_open:
            return False
        if exc_type is None:
            self.close()
        else:
            self._release_port()
        return False