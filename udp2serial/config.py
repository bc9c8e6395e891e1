"""Configuration record and command-line resolution for the UDP-to-serial bridge."""

import argparse
import enum
import ipaddress
import re
import sys
from dataclasses import dataclass
from typing import Iterable, List, Mapping, Optional, Sequence

import serial
import serial.tools.list_ports


PROG = "udp2serial"

UDP_SECTION = "UDP"
SERIAL_SECTION = "Serial"

DEFAULT_INTERFACE_IP = "0.0.0.0"
DEFAULT_BAUD_RATE = 115200
DEFAULT_DATA_BITS = 8
DEFAULT_DTR_ENABLE = False
DEFAULT_RTS_ENABLE = False

HELP_TOKENS = ("--help", "-?", "/?")


class ExitCode(enum.IntEnum):
    SUCCESS = 0
    INVALID_COMMAND_LINE_ARGS = 1
    INVALID_UDP_PORT = 2
    INVALID_COM_PORT = 3
    NO_COM_PORTS_FOUND = 4
    HELP_DISPLAY = 255


class Parity(enum.Enum):
    """Parity-checking protocol, valued by the matching pyserial constant."""

    NONE = serial.PARITY_NONE
    ODD = serial.PARITY_ODD
    EVEN = serial.PARITY_EVEN
    MARK = serial.PARITY_MARK
    SPACE = serial.PARITY_SPACE

    def __str__(self):
        return _display_name(self)


class StopBits(enum.Enum):
    """Stop bits per byte. ``NONE`` has no pyserial value and fails on open."""

    NONE = None
    ONE = serial.STOPBITS_ONE
    ONE_POINT_FIVE = serial.STOPBITS_ONE_POINT_FIVE
    TWO = serial.STOPBITS_TWO

    def __str__(self):
        return _display_name(self)


DEFAULT_PARITY = Parity.NONE
DEFAULT_STOP_BITS = StopBits.ONE


def _display_name(member: enum.Enum) -> str:
    # ONE_POINT_FIVE -> OnePointFive
    return "".join(part.capitalize() for part in member.name.split("_"))


@dataclass(frozen=True)
class Configuration:
    """Validated settings for one forwarding run."""

    udp_port: int
    serial_port_id: str
    interface_ip: str = DEFAULT_INTERFACE_IP
    baud_rate: int = DEFAULT_BAUD_RATE
    data_bits: int = DEFAULT_DATA_BITS
    parity: Parity = DEFAULT_PARITY
    stop_bits: StopBits = DEFAULT_STOP_BITS
    dtr_enable: bool = DEFAULT_DTR_ENABLE
    rts_enable: bool = DEFAULT_RTS_ENABLE
    verbose: bool = False

    def describe(self):
        """Return ``(label, value)`` pairs for the start-up banner."""
        return [
            ("UDP Interface IP", self.interface_ip),
            ("Serial Baud Rate", self.baud_rate),
            ("Serial Data Bits", self.data_bits),
            ("Serial Parity", self.parity),
            ("Serial Stop Bits", self.stop_bits),
            ("Serial DTR Enable", self.dtr_enable),
            ("Serial RTS Enable", self.rts_enable),
        ]


class ConfigError(Exception):
    """Resolution failure; ``exit_code`` is the process exit status to use."""

    exit_code = ExitCode.INVALID_COMMAND_LINE_ARGS


class InvalidCommandLineArgs(ConfigError):
    exit_code = ExitCode.INVALID_COMMAND_LINE_ARGS


class InvalidUDPPort(ConfigError):
    exit_code = ExitCode.INVALID_UDP_PORT


class InvalidCOMPort(ConfigError):
    exit_code = ExitCode.INVALID_COM_PORT


class NoCOMPortsFound(ConfigError):
    exit_code = ExitCode.NO_COM_PORTS_FOUND


class HelpRequested(ConfigError):
    """Raised for a usage request. Not an error, but it ends resolution the same way."""

    exit_code = ExitCode.HELP_DISPLAY


# Setting name -> (settings section, short alias, description)
OPTIONS = {
    "InterfaceIP": (
        UDP_SECTION,
        "-i",
        "Defines the IP of the network interface to use for UDP socket, e.g.: 0.0.0.0 or ::0",
    ),
    "BaudRate": (
        SERIAL_SECTION,
        "-b",
        "Defines the serial baud rate, e.g.: 4800, 9600, 14400, 19200, 38400, 57600 or 115200",
    ),
    "DataBits": (
        SERIAL_SECTION,
        "-d",
        "Defines the standard length of data bits per byte, e.g.: 5, 6, 7 or 8",
    ),
    "Parity": (
        SERIAL_SECTION,
        "-p",
        "Defines the parity-checking protocol, one of: Even, Mark, None, Odd or Space",
    ),
    "StopBits": (
        SERIAL_SECTION,
        "-s",
        "Defines the standard number of stopbits per byte, one of: None, One, OnePointFive or Two",
    ),
    "DtrEnable": (
        SERIAL_SECTION,
        "-t",
        "Defines boolean value that enables Data Terminal Ready signal, either: true or false",
    ),
    "RtsEnable": (
        SERIAL_SECTION,
        "-r",
        "Defines boolean value that enables Request to Send signal, either: true or false",
    ),
}

COMPILED_DEFAULTS = {
    "InterfaceIP": DEFAULT_INTERFACE_IP,
    "BaudRate": str(DEFAULT_BAUD_RATE),
    "DataBits": str(DEFAULT_DATA_BITS),
    "Parity": str(DEFAULT_PARITY),
    "StopBits": str(DEFAULT_STOP_BITS),
    "DtrEnable": str(DEFAULT_DTR_ENABLE).lower(),
    "RtsEnable": str(DEFAULT_RTS_ENABLE).lower(),
}

EXAMPLES = f"""\
examples:
  > Forward UDP on 5505 to Windows serial port COM2 at 9600 baud:
       {PROG} -b=9600 5505 COM2

  > Forward UDP on 8505 to Linux serial port /dev/ttyS2:
       {PROG} 8505 /dev/ttyS2

  > Forward UDP on port 6704 using IPv6 to first defined serial port:
       {PROG} --InterfaceIP=::0 6704
"""


_UDP_PORT_PATTERN = re.compile(r"\+?[0-9]+")

# lower-cased option token -> declared spelling
_OPTION_SPELLINGS = {
    **{f"--{name}".lower(): f"--{name}" for name in OPTIONS},
    **{alias: alias for _, alias, _ in OPTIONS.values()},
    "-v": "-v",
    "--verbose": "--verbose",
}


class _ArgumentParser(argparse.ArgumentParser):
    def error(self, message):
        raise InvalidCommandLineArgs(message)


def build_parser() -> argparse.ArgumentParser:
    """Build the command-line parser; errors raise ``InvalidCommandLineArgs``."""
    parser = _ArgumentParser(
        prog=PROG,
        description="Forward datagrams received on a UDP port to a local serial port.",
        usage=f"{PROG} [options] UDPPort [COMPortID]",
        epilog=EXAMPLES,
        formatter_class=argparse.RawDescriptionHelpFormatter,
        add_help=False,
        allow_abbrev=False,
    )
    parser.add_argument(
        "positionals",
        nargs="*",
        metavar="UDPPort [COMPortID]",
        help="UDP port to listen on, then optionally the serial port to forward to",
    )
    for name, (_, alias, description) in OPTIONS.items():
        parser.add_argument(alias, f"--{name}", dest=name, metavar="VALUE", help=description)
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )
    parser.add_argument("-?", "--help", dest="help", action="store_true", help="Shows usage")
    return parser


def print_usage(file=None):
    """Write the usage text, with examples, to ``file`` (stdout by default)."""
    build_parser().print_help(file or sys.stdout)


def report_error(error: Exception, file=None):
    """Write the error followed by the full usage text."""
    file = file or sys.stderr
    print(f"ERROR: {error}\n", file=file)
    print_usage(file)


def list_port_names() -> List[str]:
    """Enumerate the serial ports currently present on the host."""
    return sorted(port.device for port in serial.tools.list_ports.comports())


def _canonical_token(arg: str) -> str:
    """Map an option token onto its declared spelling, ignoring case."""
    if not arg.startswith("-"):
        return arg
    option, sep, value = arg.partition("=")
    canonical = _OPTION_SPELLINGS.get(option.lower())
    if canonical is None:
        return arg
    return canonical + sep + value


def resolve(
    args: Sequence[str],
    stored_defaults: Optional[Mapping[str, str]] = None,
    port_names: Optional[Iterable[str]] = None,
) -> Configuration:
    """Merge CLI arguments over stored settings over compiled defaults.

    ``port_names`` defaults to a fresh enumeration of host serial ports. Raises a
    ``ConfigError`` subclass on failure, or ``HelpRequested``.
    """
    args = [_canonical_token(arg) for arg in args]
    if any(arg.lower() in HELP_TOKENS for arg in args):
        raise HelpRequested("Usage requested")

    namespace = build_parser().parse_intermixed_args(args)
    positionals = namespace.positionals
    if not 1 <= len(positionals) <= 2:
        raise InvalidCommandLineArgs(
            f"Expected 1 or 2 arguments, received {len(positionals):,}."
        )

    stored_defaults = stored_defaults or {}
    values = {}
    for name in OPTIONS:
        cli_value = getattr(namespace, name)
        if cli_value is not None:
            values[name] = _parse_value(name, cli_value, f"--{name}")
        elif stored_defaults.get(name):
            values[name] = _parse_value(name, stored_defaults[name], f"setting {OPTIONS[name][0]}:{name}")
        else:
            values[name] = _parse_value(name, COMPILED_DEFAULTS[name], name)

    udp_port = _parse_udp_port(positionals[0])

    if port_names is None:
        port_names = list_port_names()
    port_names = list(port_names)

    if len(positionals) > 1:
        serial_port_id = positionals[1]
        if serial_port_id not in port_names:
            raise InvalidCOMPort(
                f'Serial port "{serial_port_id}" not found.\n\n{_describe_ports(port_names)}'
            )
    else:
        if not port_names:
            raise NoCOMPortsFound("No local COM ports found.")
        serial_port_id = port_names[0]

    return Configuration(
        udp_port=udp_port,
        serial_port_id=serial_port_id,
        interface_ip=values["InterfaceIP"],
        baud_rate=values["BaudRate"],
        data_bits=values["DataBits"],
        parity=values["Parity"],
        stop_bits=values["StopBits"],
        dtr_enable=values["DtrEnable"],
        rts_enable=values["RtsEnable"],
        verbose=namespace.verbose,
    )


def _describe_ports(port_names: List[str]) -> str:
    if not port_names:
        return "No local COM ports found."
    return "Available COM ports:\n" + "\n".join(f"    {name}" for name in port_names)


def _parse_udp_port(text: str) -> int:
    digits = text.strip()
    port = int(digits) if _UDP_PORT_PATTERN.fullmatch(digits) else 0
    if not 1 <= port <= 65535:
        raise InvalidUDPPort(f'Bad UDP port "{text}".')
    return port


def _parse_value(name: str, text: str, source: str):
    text = text.strip()
    try:
        return _PARSERS[name](text)
    except ValueError as e:
        raise InvalidCommandLineArgs(f'Bad value "{text}" for {source}: {e}') from e


def _parse_ip(text: str) -> str:
    return str(ipaddress.ip_address(text))


def _parse_baud_rate(text: str) -> int:
    baud = int(text)
    if baud <= 0:
        raise ValueError("baud rate must be positive")
    return baud


def _parse_data_bits(text: str) -> int:
    bits = int(text)
    if not 5 <= bits <= 8:
        raise ValueError("data bits must be 5, 6, 7 or 8")
    return bits


def _parse_bool(text: str) -> bool:
    lowered = text.lower()
    if lowered == "true":
        return True
    if lowered == "false":
        return False
    raise ValueError("expected true or false")


def _enum_parser(enum_type):
    def parse(text):
        for member in enum_type:
            if str(member).lower() == text.lower():
                return member
        choices = ", ".join(str(member) for member in enum_type)
        raise ValueError(f"expected one of: {choices}")

    return parse


_PARSERS = {
    "InterfaceIP": _parse_ip,
    "BaudRate": _parse_baud_rate,
    "DataBits": _parse_data_bits,
    "Parity": _enum_parser(Parity),
    "StopBits": _enum_parser(StopBits),
    "DtrEnable": _parse_bool,
    "RtsEnable": _parse_bool,
}
