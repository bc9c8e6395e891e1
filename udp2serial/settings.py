"""Persisted INI settings: the middle tier between command-line options and compiled defaults."""

import configparser
import logging
import os
from typing import Dict

from udp2serial.config import (
    COMPILED_DEFAULTS,
    OPTIONS,
    SERIAL_SECTION,
    UDP_SECTION,
    InvalidCommandLineArgs,
)

logger = logging.getLogger("udp2serial")

DEFAULT_SETTINGS_PATH = "settings.ini"

DESCRIPTIONS = {
    "InterfaceIP": "Defines the IP of the network interface to use for the UDP socket. "
    "Use 0.0.0.0 to listen on all interfaces with IPv4 or ::0 for all interfaces with IPv6.",
    "BaudRate": "Defines the serial baud rate. Standard values: 110, 300, 600, 1200, 2400, 4800, "
    "9600, 14400, 19200, 38400, 57600, 115200, 128000, or 256000.",
    "DataBits": "Defines the standard length of data bits per byte. Standard values: 5, 6, 7 or 8.",
    "Parity": "Defines the parity-checking protocol. Value is one of: Even, Mark, None, Odd or Space.",
    "StopBits": "Defines the standard number of stopbits per byte. "
    "Value is one of: None, One, OnePointFive or Two.",
    "DtrEnable": "Defines the value that enables the Data Terminal Ready (DTR) signal "
    "during serial communication.",
    "RtsEnable": "Defines the value indicating whether the Request to Send (RTS) signal "
    "is enabled during serial communication.",
}


def render_template() -> str:
    """Return the first-run settings file: every key commented out at its default."""
    lines = []
    for section in (UDP_SECTION, SERIAL_SECTION):
        lines.append(f"[{section}]")
        for name, (option_section, _, _) in OPTIONS.items():
            if option_section != section:
                continue
            lines.append(f"; {DESCRIPTIONS[name]}")
            lines.append(f";{name} = {COMPILED_DEFAULTS[name]}")
            lines.append("")
    return "\n".join(lines)


def ensure_settings_file(path: str = DEFAULT_SETTINGS_PATH) -> bool:
    """Create the settings file if absent. Returns True when a file was written."""
    if os.path.isfile(path):
        return False
    try:
        with open(path, "w", encoding="utf-8") as f:
            f.write(render_template())
    except OSError as e:
        logger.warning("Could not create settings file %s: %s", path, e)
        return False
    logger.debug("Created default settings file %s", path)
    return True


def load_settings(path: str = DEFAULT_SETTINGS_PATH) -> Dict[str, str]:
    """Read the settings file into a flat ``{name: value}`` overlay.

    Missing files and missing keys are simply absent from the result.
    """
    parser = configparser.ConfigParser(interpolation=None)
    stored = {}
    try:
        parser.read(path, encoding="utf-8")
        for name, (section, _, _) in OPTIONS.items():
            value = parser.get(section, name, fallback=None)
            if value is not None:
                stored[name] = value
    except (configparser.Error, UnicodeDecodeError) as e:
        raise InvalidCommandLineArgs(f"Bad settings file {path}: {e}") from e
    return stored
