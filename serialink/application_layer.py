"""File transfer over the link: control and data packets, sender and receiver."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from enum import IntEnum
from pathlib import Path

from .link_layer import LinkLayer, LinkParameters, Role

FRAGMENT_SIZE = 3000
"""Number of file bytes carried by one data packet."""

SEQUENCE_MODULUS = 100
"""Data packet sequence numbers wrap around at this value."""

_FILE_SIZE_LENGTH = 4
_MAX_FIELD_LENGTH = 0xFF
_MAX_FRAGMENT_LENGTH = 0xFFFF
_DATA_HEADER_LENGTH = 4

_log = logging.getLogger(__name__)


class PacketControl(IntEnum):
    """First byte of every application packet."""

    START = 0x01
    DATA = 0x02
    END = 0x03


class _ParameterType(IntEnum):
    FILE_SIZE = 0x00
    FILE_NAME = 0x01


class PacketError(ValueError):
    """Raised when a packet cannot be built or does not parse."""


@dataclass(frozen=True)
class ControlPacket:
    """Contents of a START or END packet."""

    control: PacketControl
    file_size: int
    filename: str


@dataclass(frozen=True)
class DataPacket:
    """Contents of a DATA packet."""

    sequence: int
    data: bytes


def build_control_packet(control, file_size, filename):
    """Build a START or END packet announcing the file size and name."""
    control = PacketControl(control)
    if control is PacketControl.DATA:
        raise PacketError("a control packet must be START or END")
    if not 0 <= file_size < 1 << (8 * _FILE_SIZE_LENGTH):
        raise PacketError(f"file size {file_size} does not fit in the packet")
    name = os.fsencode(filename)
    if len(name) > _MAX_FIELD_LENGTH:
        raise PacketError("file name is longer than 255 bytes")
    size_field = file_size.to_bytes(_FILE_SIZE_LENGTH, "little")
    return (
        bytes((control, _ParameterType.FILE_SIZE, len(size_field)))
        + size_field
        + bytes((_ParameterType.FILE_NAME, len(name)))
        + name
    )


def parse_control_packet(packet):
    """Parse a START or END packet into a ControlPacket."""
    packet = bytes(packet)
    if not packet:
        raise PacketError("empty packet")
    if packet[0] not in (PacketControl.START, PacketControl.END):
        raise PacketError(f"not a control packet: 0x{packet[0]:02X}")
    file_size = 0
    filename = ""
    position = 1
    while position < len(packet):
        if position + 2 > len(packet):
            raise PacketError("truncated parameter header")
        kind, length = packet[position], packet[position + 1]
        value = packet[position + 2 : position + 2 + length]
        if len(value) != length:
            raise PacketError("truncated parameter value")
        if kind == _ParameterType.FILE_SIZE:
            file_size = int.from_bytes(value, "little")
        elif kind == _ParameterType.FILE_NAME:
            filename = os.fsdecode(value)
        position += 2 + length
    return ControlPacket(PacketControl(packet[0]), file_size, filename)


def build_data_packet(sequence, fragment):
    """Build a DATA packet carrying ``fragment``."""
    fragment = bytes(fragment)
    if not 0 <= sequence <= 0xFF:
        raise PacketError(f"sequence number {sequence} out of range")
    if len(fragment) > _MAX_FRAGMENT_LENGTH:
        raise PacketError("fragment is too long for one data packet")
    high, low = divmod(len(fragment), 256)
    return bytes((PacketControl.DATA, sequence, high, low)) + fragment


def parse_data_packet(packet):
    """Parse a DATA packet into a DataPacket."""
    packet = bytes(packet)
    if len(packet) < _DATA_HEADER_LENGTH:
        raise PacketError("data packet is shorter than its header")
    if packet[0] != PacketControl.DATA:
        raise PacketError(f"not a data packet: 0x{packet[0]:02X}")
    length = packet[2] * 256 + packet[3]
    data = packet[_DATA_HEADER_LENGTH : _DATA_HEADER_LENGTH + length]
    if len(data) != length:
        raise PacketError("data packet is shorter than its announced length")
    return DataPacket(packet[1], data)


def iter_fragments(stream):
    """Yield successive fragments of at most FRAGMENT_SIZE bytes from a binary stream."""
    while chunk := stream.read(FRAGMENT_SIZE):
        yield chunk


def send_file(link, path):
    """Send the file at ``path`` over an open link; return its size in bytes."""
    name = os.fspath(path)
    with open(name, "rb") as stream:
        file_size = os.fstat(stream.fileno()).st_size
        link.write(build_control_packet(PacketControl.START, file_size, name))
        for number, fragment in enumerate(iter_fragments(stream)):
            _log.debug("sending fragment %d", number)
            link.write(build_data_packet(number % SEQUENCE_MODULUS, fragment))
        link.write(build_control_packet(PacketControl.END, file_size, name))
    return file_size


def receive_file(link, directory):
    """Receive one file over an open link and store it in ``directory``.

    The file is named after the name announced in the START packet.
    Returns the path written.
    """
    while True:
        packet = link.read()
        if packet and packet[0] == PacketControl.START:
            start = parse_control_packet(packet)
            break
    name = Path(start.filename).name
    if not name:
        raise PacketError("START packet carries no file name")
    target = Path(directory) / name
    with target.open("wb") as output:
        while True:
            packet = link.read()
            if not packet:
                continue
            if packet[0] == PacketControl.DATA:
                output.write(parse_data_packet(packet).data)
            elif packet[0] == PacketControl.END:
                break
    return target


def application_layer(serial_port, role, baud_rate, n_tries, timeout, filename):
    """Run one side of a file transfer.

    As ``"tx"`` the file ``filename`` is sent; as ``"rx"`` the received
    file is stored in the current directory under the name the sender
    announced.
    """
    parameters = LinkParameters(
        serial_port=serial_port,
        role=Role(role),
        baud_rate=baud_rate,
        n_retransmissions=n_tries,
        timeout=timeout,
    )
    if parameters.role is Role.TX and not os.path.isfile(filename):
        raise FileNotFoundError(filename)
    link = LinkLayer(parameters)
    link.open()
    if parameters.role is Role.RX:
        receive_file(link, Path.cwd())
    else:
        send_file(link, filename)
    link.close(True)