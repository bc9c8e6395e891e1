"""UDP-to-serial bridge: forward datagrams received on a UDP port to a local serial port."""

from udp2serial.bridge import ForwardEngine, ForwardObserver, LoggingObserver, run_bridge
from udp2serial.config import Configuration, ConfigError, ExitCode, resolve

__all__ = [
    "ConfigError",
    "Configuration",
    "ExitCode",
    "ForwardEngine",
    "ForwardObserver",
    "LoggingObserver",
    "resolve",
    "run_bridge",
]
