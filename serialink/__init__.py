"""Stop-and-wait link-layer file transfer over serial ports, with a virtual cable."""

__version__ = "0.1.0"

__all__ = [
    "serial_port",
    "frames",
    "link_layer",
    "application_layer",
    "cli",
    "cable_core",
    "cable",
]