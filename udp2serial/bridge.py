"""Asyncio-based engine forwarding UDP datagrams to a serial port."""

import asyncio
import enum
import logging
import signal
import time
from typing import Callable, Optional

import serial

from udp2serial.config import Configuration

logger = logging.getLogger("udp2serial")

DISPLAY_INTERVAL = 10.0
CLOSE_TIMEOUT = 1.0


class EngineState(enum.Enum):
    IDLE = "idle"
    SERIAL_OPENING = "serial-opening"
    SERIAL_OPEN = "serial-open"
    UDP_CONNECTING = "udp-connecting"
    RUNNING = "running"
    STOPPING = "stopping"


def open_serial(config: Configuration) -> serial.Serial:
    """Open the serial port with the given settings."""
    ser = serial.Serial()
    ser.port = config.serial_port_id
    ser.baudrate = config.baud_rate
    ser.bytesize = config.data_bits
    ser.parity = config.parity.value
    ser.stopbits = config.stop_bits.value
    ser.dtr = config.dtr_enable
    ser.rts = config.rts_enable
    ser.open()
    return ser


class ForwardObserver:
    """Receives session notifications from a ``ForwardEngine``. All methods are no-ops."""

    def connection_attempt(self, udp_port: int):
        pass

    def connection_established(self, address):
        pass

    def connection_exception(self, udp_port: int, exc: Exception):
        pass

    def connection_terminated(self, udp_port: int):
        pass

    def receive_exception(self, exc: Exception):
        pass

    def progress(self, bytes_forwarded: int, udp_port: int):
        pass


class LoggingObserver(ForwardObserver):
    """Writes every session notification to the ``udp2serial`` logger."""

    def connection_attempt(self, udp_port):
        """Log the start of the UDP bind."""
        logger.info("Attempting UDP connection on port %s...", udp_port)

    def connection_established(self, address):
        """Log the bound address."""
        logger.info("UDP connection established on %s:%s.", address[0], address[1])

    def connection_exception(self, udp_port, exc):
        """Log a failed UDP bind as an error."""
        logger.error("UDP connection on port %s failed: %s", udp_port, exc)

    def connection_terminated(self, udp_port):
        """Log the UDP endpoint closing."""
        logger.info("UDP connection on port %s terminated.", udp_port)

    def receive_exception(self, exc):
        """Log a receive failure as an error."""
        logger.error("UDP receive data exception: %s", exc)

    def progress(self, bytes_forwarded, udp_port):
        """Log the cumulative byte count."""
        logger.info(
            "Forwarded %s bytes received from UDP port %s so far...",
            f"{bytes_forwarded:,}",
            udp_port,
        )


class _ForwardProtocol(asyncio.DatagramProtocol):
    """Relays transport events to the engine until detached."""

    def __init__(self, engine: "ForwardEngine"):
        self._engine: Optional[ForwardEngine] = engine
        self.closed = asyncio.get_running_loop().create_future()

    def detach(self):
        """Stop relaying events; later callbacks are ignored."""
        self._engine = None

    def connection_made(self, transport):
        """Report the bound endpoint as established."""
        if self._engine is not None:
            self._engine._connection_made(transport)

    def datagram_received(self, data, addr):
        """Forward one datagram to the serial port."""
        if self._engine is not None:
            self._engine.forward(data)

    def error_received(self, exc):
        """Report a receive failure; the session continues."""
        if self._engine is not None:
            self._engine._receive_exception(exc)

    def connection_lost(self, exc):
        """Resolve ``closed`` once the socket is released."""
        if not self.closed.done():
            self.closed.set_result(exc)


class ForwardEngine:
    """Owns one serial handle and one UDP endpoint and copies datagrams between them.

    Every receive callback runs on the event loop thread, so serial writes and
    the byte counter are only touched from one thread and datagrams reach the
    serial port in arrival order without a lock.
    """

    def __init__(
        self,
        observer: Optional[ForwardObserver] = None,
        *,
        serial_factory: Callable[[Configuration], serial.Serial] = open_serial,
        clock: Callable[[], float] = time.monotonic,
        display_interval: float = DISPLAY_INTERVAL,
    ):
        self._observer = observer or ForwardObserver()
        self._serial_factory = serial_factory
        self._clock = clock
        self._display_interval = display_interval
        self.state = EngineState.IDLE
        self.bytes_forwarded = 0
        self.config: Optional[Configuration] = None
        self.serial: Optional[serial.Serial] = None
        self._transport: Optional[asyncio.DatagramTransport] = None
        self._protocol: Optional[_ForwardProtocol] = None
        self._failed: Optional[asyncio.Future] = None
        self._last_display = 0.0

    @property
    def local_address(self):
        """Bound ``(host, port, ...)`` of the UDP endpoint, or None when not running."""
        if self._transport is None:
            return None
        return self._transport.get_extra_info("sockname")

    async def start(self, config: Configuration) -> bool:
        """Open the serial port, then bind the UDP endpoint.

        Serial open failures propagate. A UDP bind failure is reported to the
        observer, the serial port is released and False is returned.
        """
        if config is None:
            raise ValueError("config must not be None")
        if self.state is not EngineState.IDLE:
            raise RuntimeError(f"Cannot start engine in state {self.state.value}")
        loop = asyncio.get_running_loop()
        self.config = config

        self.state = EngineState.SERIAL_OPENING
        try:
            self.serial = self._serial_factory(config)
        except Exception:
            self.state = EngineState.IDLE
            raise
        self.state = EngineState.SERIAL_OPEN
        logger.debug("Serial opened: %s @ %s baud", config.serial_port_id, config.baud_rate)

        self.state = EngineState.UDP_CONNECTING
        self._failed = loop.create_future()
        self._last_display = self._clock()
        self._observer.connection_attempt(config.udp_port)
        try:
            self._transport, self._protocol = await loop.create_datagram_endpoint(
                lambda: _ForwardProtocol(self),
                local_addr=(config.interface_ip, config.udp_port),
            )
        except OSError as e:
            self._observer.connection_exception(config.udp_port, e)
            self._close_serial()
            self.state = EngineState.IDLE
            return False
        self.state = EngineState.RUNNING
        return True

    def forward(self, data: bytes) -> None:
        """Write one datagram to the serial port and update the byte counter."""
        if self.serial is None or self._failed is None or self._failed.done():
            return
        now = self._clock()
        show_progress = (
            self.bytes_forwarded > 0 and now - self._last_display > self._display_interval
        )
        try:
            self.serial.write(data)
        except Exception as e:
            logger.debug("Serial write failed after %s bytes", self.bytes_forwarded)
            self._failed.set_result(e)
            return
        self.bytes_forwarded += len(data)

        if show_progress:
            self._last_display = now
            self._observer.progress(self.bytes_forwarded, self.config.udp_port)

    async def stop(self) -> None:
        """Unsubscribe, close the UDP endpoint, then close the serial port."""
        if self.state is EngineState.IDLE:
            return
        self.state = EngineState.STOPPING
        protocol, transport = self._protocol, self._transport
        self._protocol = self._transport = None

        if protocol is not None:
            protocol.detach()
        if transport is not None:
            transport.close()
            try:
                await asyncio.wait_for(asyncio.shield(protocol.closed), CLOSE_TIMEOUT)
            except asyncio.TimeoutError:
                logger.warning("UDP endpoint did not close within %ss", CLOSE_TIMEOUT)
            self._observer.connection_terminated(self.config.udp_port)

        self._close_serial()
        self.state = EngineState.IDLE

    async def run(self, config: Configuration, stop_event: asyncio.Event) -> None:
        """Run one session until ``stop_event`` is set or the serial write fails.

        Never raises: unsupported-platform errors are absorbed silently, any
        other error is logged.
        """
        try:
            self._log_banner(config)
            try:
                if not await self.start(config):
                    return
                logger.info("Press Ctrl+C to stop...")
                await self._wait(stop_event)
            finally:
                await self.stop()
        except NotImplementedError:
            logger.debug("Platform not supported", exc_info=True)
        except Exception as e:
            logger.error("ERROR: %s", e)

    async def _wait(self, stop_event: asyncio.Event):
        stop_task = asyncio.ensure_future(stop_event.wait())
        try:
            await asyncio.wait({stop_task, self._failed}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            stop_task.cancel()
        if self._failed.done():
            raise self._failed.result()

    def _log_banner(self, config):
        if config is None:
            return
        logger.info(
            'Establishing forward to serial port "%s" from data received on UDP port %s',
            config.serial_port_id,
            config.udp_port,
        )
        for label, value in config.describe():
            logger.info("%21s: %s", label, value)

    def _connection_made(self, transport):
        self._observer.connection_established(transport.get_extra_info("sockname"))

    def _receive_exception(self, exc):
        self._observer.receive_exception(exc)

    def _close_serial(self):
        ser, self.serial = self.serial, None
        if ser is not None:
            ser.close()
            logger.debug("Serial closed")


def configure_logging(verbose: bool = False):
    """Configure root logging at INFO, or DEBUG when verbose."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


async def run_bridge_async(
    config: Configuration, observer: Optional[ForwardObserver] = None
) -> ForwardEngine:
    """Run the engine until SIGINT/SIGTERM; returns the stopped engine."""
    engine = ForwardEngine(observer or LoggingObserver())
    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except NotImplementedError:
            # Windows: Ctrl+C arrives as KeyboardInterrupt instead
            pass
    await engine.run(config, stop_event)
    return engine


def run_bridge(config: Configuration, verbose: bool = False):
    """Synchronous entry: run the asyncio bridge until interrupted."""
    configure_logging(verbose)
    try:
        asyncio.run(run_bridge_async(config))
    except KeyboardInterrupt:
        pass
