import io
import random

import pytest

from serialink.cable_core import (
    HELP_TEXT,
    Cable,
    DelayLine,
    TrafficLog,
    byte_delay_ns,
    byte_error_rate,
    bytes_in_flight,
    flip_random_bit,
)
from serialink.serial_port import SUPPORTED_BAUD_RATES


class _AlwaysFlip:
    def random(self):
        return 0.0

    def randrange(self, n):
        return n - 1


@pytest.mark.parametrize("baud", SUPPORTED_BAUD_RATES)
def test_byte_delay_is_ten_bit_times(baud):
    delay = byte_delay_ns(baud)
    assert delay * baud <= 1e10 < (delay + 1) * baud


def test_byte_delay_exact_value():
    assert byte_delay_ns(10000) == 1_000_000


def test_byte_delay_rejects_zero():
    with pytest.raises(ValueError):
        byte_delay_ns(0)


def test_bytes_in_flight_zero_delay():
    assert bytes_in_flight(0, byte_delay_ns(9600)) == 0


@pytest.mark.parametrize("prop", [1, 500, 1000, 1500, 1501, 10000, 999999])
@pytest.mark.parametrize("delay_ns", [1_000_000, byte_delay_ns(9600), byte_delay_ns(115200)])
def test_bytes_in_flight_rounds_to_nearest(prop, delay_ns):
    count = bytes_in_flight(prop, delay_ns)
    assert abs(count * delay_ns - 1000 * prop) <= delay_ns / 2


def test_bytes_in_flight_rejects_bad_delay():
    with pytest.raises(ValueError):
        bytes_in_flight(100, 0)


def test_byte_error_rate_bounds_and_monotonic():
    assert byte_error_rate(0.0) == 0.0
    rates = [byte_error_rate(b / 100) for b in range(100)]
    assert rates == sorted(rates)
    assert all(0.0 <= r < 1.0 for r in rates)


def test_byte_error_rate_small_ber_is_about_eight_times():
    assert byte_error_rate(1e-6) == pytest.approx(8e-6, rel=1e-4)


def test_flip_random_bit_flips_exactly_one_bit():
    rng = random.Random(7)
    seen = set()
    for _ in range(400):
        flipped = flip_random_bit(0x5A, rng)
        diff = flipped ^ 0x5A
        assert bin(diff).count("1") == 1
        seen.add(diff)
    assert seen == {1 << bit for bit in range(8)}


def test_delay_line_single_slot_is_immediate():
    line = DelayLine(1)
    assert [line.push(b) for b in (3, None, 9)] == [3, None, 9]


def test_delay_line_delays_by_size_minus_one():
    size = 4
    line = DelayLine(size)
    inputs = list(range(10))
    outputs = [line.push(b) for b in inputs]
    assert outputs == [None] * (size - 1) + inputs[: len(inputs) - (size - 1)]


def test_delay_line_rejects_empty():
    with pytest.raises(ValueError):
        DelayLine(0)


def test_traffic_log_header_and_record():
    stream = io.StringIO()
    log = TrafficLog(stream)
    log.record(0x01, 0x02, 0x0A, 0xFF)
    assert stream.getvalue() == "Tx->Rx | Rx->Tx\n01  02 | 0A  FF\n"


def test_traffic_log_collapses_idle_runs():
    stream = io.StringIO()
    log = TrafficLog(stream)
    log.record(None, None, None, None)
    log.record(None, None, None, None)
    log.record(0x7E, None, None, None)
    log.record(None, None, None, None)
    lines = stream.getvalue().splitlines()
    assert lines[1] == "---------------"
    assert lines[2].startswith("7E")
    assert lines[3] == "---------------"
    assert len(lines) == 4


def test_traffic_log_cable_off_and_close():
    stream = io.StringIO()
    log = TrafficLog(stream)
    log.cable_off()
    assert stream.getvalue().endswith("CABLE OFF\n")
    log.close()
    assert stream.closed


def test_cable_passes_bytes_without_delay():
    cable = Cable(random.Random(1))
    assert cable.step(0x41, 0x42) == (0x41, 0x42)
    assert cable.step(None, None) == (None, None)


def test_cable_off_drops_and_on_restores():
    cable = Cable(random.Random(1))
    assert cable.handle_command("off\n") == "CONNECTION OFF"
    assert cable.step(0x41, 0x42) == (None, None)
    assert cable.handle_command("on") == "CONNECTION ON"
    assert cable.step(0x41, 0x42) == (0x41, 0x42)


def test_cable_noise_flips_bits():
    cable = Cable(_AlwaysFlip())
    message = cable.handle_command("ber 0.5")
    assert message.startswith("BER SET TO 0.5")
    assert "ACTUAL BER WILL BE LOWER" in message
    to_rx, to_tx = cable.step(0x00, None)
    assert to_rx == 1 << 7
    assert to_tx is None


def test_cable_small_ber_has_no_warning():
    cable = Cable()
    message = cable.handle_command("ber 0.001")
    assert message.startswith("BER SET TO")
    assert "ACTUAL" not in message
    assert cable.byte_er == pytest.approx(byte_error_rate(0.001))


def test_cable_bad_ber_is_rejected():
    cable = Cable()
    assert cable.handle_command("ber 2").startswith("BAD BER VALUE")
    assert cable.byte_er == 0.0


def test_cable_propagation_delay_shifts_bytes():
    cable = Cable(random.Random(1))
    actual = cable.set_propagation_delay(10000)
    in_flight = bytes_in_flight(10000, cable.delay_ns)
    assert actual == in_flight * cable.delay_ns // 1000
    outputs = [cable.step(b, None)[0] for b in range(in_flight + 3)]
    assert outputs[:in_flight] == [None] * in_flight
    assert outputs[in_flight:] == [0, 1, 2]


def test_cable_propagation_delay_out_of_range():
    cable = Cable()
    with pytest.raises(ValueError):
        cable.set_propagation_delay(1_000_001)
    assert cable.handle_command("prop 1000001") == "BAD OR OUT OF RANGE PROPAGATION DELAY"
    assert cable.handle_command("prop x") == "BAD OR OUT OF RANGE PROPAGATION DELAY"


def test_cable_prop_command_reports_delay():
    cable = Cable()
    message = cable.handle_command("prop 0")
    assert message == "PROPAGATION DELAY SET TO 0 usec (DESIRED = 0 usec)"


def test_cable_baud_command():
    cable = Cable()
    message = cable.handle_command("baud 115200")
    assert message.startswith("BAUD RATE: 115200")
    assert cable.delay_ns == byte_delay_ns(115200)
    assert cable.handle_command("baud 1234").startswith("UNSUPPORTED BAUD RATE")
    assert cable.baud == 115200
    with pytest.raises(ValueError):
        cable.set_baud_rate(1234)


def test_cable_quit_help_and_unknown():
    cable = Cable()
    assert cable.handle_command("help") == HELP_TEXT
    assert cable.handle_command("bogus") == "BAD COMMAND OR MISSING PARAMETERS"
    assert cable.running
    assert cable.handle_command("quit\n") == "END OF THE PROGRAM"
    assert not cable.running


def test_cable_logging_to_file(tmp_path):
    path = tmp_path / "traffic.log"
    cable = Cable(random.Random(1))
    assert cable.handle_command(f"log {path}") == f"LOGGING TO FILE {path}"
    cable.step(0x41, None)
    cable.handle_command("off")
    assert cable.handle_command("endlog") == "NOT LOGGING"
    assert cable.log is None
    lines = path.read_text().splitlines()
    assert lines[0] == "Tx->Rx | Rx->Tx"
    left, right = lines[1].split("|")
    assert left.split() == ["41", "41"]
    assert right.strip() == ""
    assert lines[2] == "CABLE OFF"


def test_cable_logging_to_bad_path(tmp_path):
    path = tmp_path / "missing" / "traffic.log"
    cable = Cable()
    assert cable.handle_command(f"log {path}") == f"ERROR OPENING FILE {path}, NOT LOGGING"
    assert cable.log is None