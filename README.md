# serialink

A stop-and-wait link-layer protocol for sending a file over a serial line,
and a virtual cable that joins two pseudo-terminals and can add delay,
noise and outages to the traffic between them.

It needs a POSIX system, because serial ports are configured through
`termios`. It has no dependencies outside the standard library.

## Installing

    pip install .

For the tests:

    pip install .[test]
    pytest

## Sending and receiving a file

Start the receiver on one end, then the transmitter on the other:

    serialink /dev/ttyS11 9600 rx penguin-received.gif
    serialink /dev/ttyS10 9600 tx penguin.gif

The arguments are the serial device, the baud rate, the role (`tx` or `rx`)
and a file name. Supported baud rates are 1200, 1800, 2400, 4800, 9600,
19200, 38400, 57600 and 115200. Each frame is sent up to 3 times, waiting
4 seconds for an acknowledgement each time.

The transmitter sends the named file. The receiver does not use its file
name argument: it stores the data in the current directory under the name
the transmitter announced (without any directory part). When the link is
closed, the number of acknowledged frames and of retransmissions is printed.

Exit status: 1 for missing arguments, 2 for an unsupported baud rate, 3 for
a role other than `tx` or `rx`, and 1 if the transfer fails.

## The virtual cable

    serialink-cable

starts two `socat` pseudo-terminal pairs, linking `/dev/ttyS10`
(transmitter side) to `/dev/emulatorTx` and `/dev/ttyS11` (receiver side)
to `/dev/emulatorRx`, then forwards one byte per byte time between the two
sides. It reads commands from standard input:

- `help`: show the command list
- `on` / `off`: connect or disconnect the cable
- `ber <ber>`: set the bit error rate (0 <= ber < 1); a byte hit by noise has one bit flipped
- `baud <rate>`: set the emulated baud rate (10 bit times per byte)
- `prop <usec>`: set the propagation delay, 0 to 1000000 microseconds, rounded to whole byte times
- `log <file>` / `endlog`: start or stop a hex log of the bytes entering and leaving the cable
- `quit`: stop the cable and the `socat` processes

`socat` must be installed, and creating links under `/dev` usually needs
root privileges. Changing the baud rate or propagation delay during a
transfer loses the bytes in flight.

## Using it from Python

- `serialink.serial_port.SerialPort(path, baud_rate)` opens a port in raw
  8N1 mode; `read_byte()` returns an int or `None`, `write(data)` returns the
  number of bytes written, and `close()` restores the original settings. It
  is a context manager.
- `serialink.frames` builds supervision and information frames
  (`build_supervision`, `build_information`), does byte stuffing (`stuff`),
  and has the byte-at-a-time receivers `SupervisionReceiver` and
  `InformationReceiver`.
- `serialink.link_layer.LinkLayer(parameters, port=None)` takes a
  `LinkParameters` (serial port, `Role.TX` or `Role.RX`, baud rate,
  retransmissions, timeout) and offers `open()`, `write(data)`, `read()` and
  `close(show_statistics=False)`. `port` may be any object with
  `read_byte()`, `write(data)` and `close()`; otherwise a `SerialPort` is
  opened. Failures raise `LinkLayerError`; counters are in `statistics`.
- `serialink.application_layer` has `send_file(link, path)`,
  `receive_file(link, directory)`, `application_layer(...)` and the packet
  helpers `build_control_packet`, `parse_control_packet`,
  `build_data_packet`, `parse_data_packet` and `iter_fragments`.
- `serialink.cable_core.Cable` holds the cable's state; `step(from_tx, from_rx)`
  advances one byte time and `handle_command(line)` applies a command and
  returns the message to show.

## Limits

- The receiving side waits without a time limit for the connection request,
  for each data frame and for the disconnect request.
- Only one file is transferred per connection, and file sizes must fit in
  four bytes.
- There is no support for Windows serial ports.