import io

import pytest

from serialink.application_layer import (
    FRAGMENT_SIZE,
    ControlPacket,
    DataPacket,
    PacketControl,
    PacketError,
    application_layer,
    build_control_packet,
    build_data_packet,
    iter_fragments,
    parse_control_packet,
    parse_data_packet,
    receive_file,
    send_file,
)


class FakeLink:
    def __init__(self, incoming=()):
        self.sent = []
        self._incoming = list(incoming)

    def write(self, data):
        self.sent.append(bytes(data))
        return len(data)

    def read(self):
        return self._incoming.pop(0)


def test_control_packet_wire_layout():
    packet = build_control_packet(PacketControl.START, 10, "ab")
    assert packet == bytes([1, 0, 4, 10, 0, 0, 0, 1, 2]) + b"ab"


def test_control_packet_round_trip():
    packet = build_control_packet(PacketControl.END, 123456, "penguin.gif")
    assert parse_control_packet(packet) == ControlPacket(
        PacketControl.END, 123456, "penguin.gif"
    )


def test_control_packet_rejects_data_control():
    with pytest.raises(PacketError):
        build_control_packet(PacketControl.DATA, 1, "x")


def test_control_packet_rejects_long_name():
    with pytest.raises(PacketError):
        build_control_packet(PacketControl.START, 1, "n" * 256)


def test_control_packet_rejects_oversized_file():
    with pytest.raises(PacketError):
        build_control_packet(PacketControl.START, 1 << 32, "x")


def test_parse_control_packet_truncated():
    packet = build_control_packet(PacketControl.START, 5, "name")
    with pytest.raises(PacketError):
        parse_control_packet(packet[:-2])


def test_parse_control_packet_wrong_control():
    with pytest.raises(PacketError):
        parse_control_packet(bytes([PacketControl.DATA, 0, 0, 0]))


def test_data_packet_wire_layout():
    assert build_data_packet(5, b"xy") == bytes([2, 5, 0, 2]) + b"xy"


def test_data_packet_round_trip_large():
    fragment = bytes(range(256)) * 11
    packet = build_data_packet(42, fragment)
    assert parse_data_packet(packet) == DataPacket(42, fragment)


def test_data_packet_length_mismatch():
    packet = build_data_packet(1, b"hello")
    with pytest.raises(PacketError):
        parse_data_packet(packet[:-1])


def test_data_packet_bad_sequence():
    with pytest.raises(PacketError):
        build_data_packet(256, b"")


def test_iter_fragments_splits_stream():
    data = bytes(FRAGMENT_SIZE * 2 + 17)
    fragments = list(iter_fragments(io.BytesIO(data)))
    assert [len(f) for f in fragments] == [FRAGMENT_SIZE, FRAGMENT_SIZE, 17]
    assert b"".join(fragments) == data


def test_iter_fragments_empty():
    assert list(iter_fragments(io.BytesIO(b""))) == []


def test_send_file_packet_sequence(tmp_path):
    source = tmp_path / "data.bin"
    content = bytes(i % 251 for i in range(FRAGMENT_SIZE * 2 + 100))
    source.write_bytes(content)
    link = FakeLink()
    assert send_file(link, source) == len(content)
    start = parse_control_packet(link.sent[0])
    end = parse_control_packet(link.sent[-1])
    assert start == ControlPacket(PacketControl.START, len(content), str(source))
    assert end.control is PacketControl.END
    data_packets = [parse_data_packet(p) for p in link.sent[1:-1]]
    assert [p.sequence for p in data_packets] == [0, 1, 2]
    assert b"".join(p.data for p in data_packets) == content


def test_send_and_receive_round_trip(tmp_path):
    source_dir = tmp_path / "src"
    source_dir.mkdir()
    target_dir = tmp_path / "dst"
    target_dir.mkdir()
    source = source_dir / "original"
    content = bytes(range(256)) * 30
    source.write_bytes(content)
    sender = FakeLink()
    send_file(sender, source)
    receiver = FakeLink(sender.sent)
    written = receive_file(receiver, target_dir)
    assert written == target_dir / "original"
    assert written.read_bytes() == content


def test_receive_ignores_packets_before_start(tmp_path):
    incoming = [
        b"",
        build_data_packet(0, b"stale"),
        build_control_packet(PacketControl.START, 3, "f.txt"),
        build_data_packet(0, b"abc"),
        build_control_packet(PacketControl.END, 3, "f.txt"),
    ]
    written = receive_file(FakeLink(incoming), tmp_path)
    assert written.read_bytes() == b"abc"


def test_receive_requires_file_name(tmp_path):
    incoming = [build_control_packet(PacketControl.START, 0, "")]
    with pytest.raises(PacketError):
        receive_file(FakeLink(incoming), tmp_path)


def test_application_layer_rejects_role(tmp_path):
    with pytest.raises(ValueError):
        application_layer(str(tmp_path / "port"), "xx", 9600, 3, 4, "file")


def test_application_layer_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        application_layer(
            str(tmp_path / "port"), "tx", 9600, 3, 4, str(tmp_path / "absent")
        )