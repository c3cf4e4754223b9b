# Transports - direct delivery of ESC/POS bytes to thermal printers
# USB (pyusb), Bluetooth serial/RFCOMM (pyserial) and raw TCP (port 9100)

import socket
import threading
import time
import logging
from typing import Dict, Optional

import serial
import usb.core
import usb.util

from .models import PrinterDescriptor

logger = logging.getLogger(__name__)


# USB vendor IDs of common thermal printers (Winbond/POSYTUDE, Epson, Star, ...)
THERMAL_PRINTER_VENDORS = (
    0x0416, 0x04B8, 0x0519, 0x0DD4, 0x1504, 0x0FE6, 0x28E9, 0x0483, 0x1FC9,
)


class TransportError(Exception):
    """Printer unreachable or the write failed"""


class Transport:
    """A live connection to one printer"""

    kind = 'unknown'
    chunk_size = 0

    def open(self):
        raise NotImplementedError

    def close(self):
        pass

    def _write_chunk(self, chunk: bytes):
        raise NotImplementedError

    def write(self, data: bytes) -> bool:
        """Send raw bytes. Raises TransportError on device failure."""
        if not data:
            return True
        size = self.chunk_size or len(data)
        try:
            for i in range(0, len(data), size):
                self._write_chunk(data[i:i + size])
        except TransportError:
            raise
        except Exception as e:
            raise TransportError(f"{self.kind} write failed: {e}") from e
        return True


class UsbTransport(Transport):
    """USB printer via pyusb, 64-byte bulk transfers"""

    kind = 'usb'
    chunk_size = 64

    def __init__(self, vendor_id: Optional[int] = None, product_id: Optional[int] = None,
                 timeout_ms: int = 5000):
        self.vendor_id = vendor_id
        self.product_id = product_id
        self.timeout_ms = timeout_ms
        self.device = None
        self.endpoint = None

    def _find_device(self):
        if self.vendor_id is not None:
            kwargs = {'idVendor': self.vendor_id}
            if self.product_id:
                kwargs['idProduct'] = self.product_id
            return usb.core.find(**kwargs)
        for vendor_id in THERMAL_PRINTER_VENDORS:
            device = usb.core.find(idVendor=vendor_id)
            if device is not None:
                return device
        return None

    def open(self):
        try:
            device = self._find_device()
            if device is None:
                raise TransportError("No USB thermal printer found")
            try:
                if device.is_kernel_driver_active(0):
                    device.detach_kernel_driver(0)
            except (NotImplementedError, usb.core.USBError):
                pass  # not supported on this platform
            device.set_configuration()
            interface = device.get_active_configuration()[(0, 0)]
            endpoint = usb.util.find_descriptor(
                interface,
                custom_match=lambda ep: usb.util.endpoint_direction(ep.bEndpointAddress)
                == usb.util.ENDPOINT_OUT,
            )
            if endpoint is None:
                raise TransportError("USB printer has no OUT endpoint")
        except TransportError:
            raise
        except Exception as e:
            raise TransportError(f"USB open failed: {e}") from e

        self.device = device
        self.endpoint = endpoint
        logger.info("USB printer opened (vendor=%04x product=%04x)",
                    device.idVendor, device.idProduct)

    def _write_chunk(self, chunk: bytes):
        if self.endpoint is None:
            raise TransportError("USB printer not open")
        self.endpoint.write(chunk, self.timeout_ms)

    def close(self):
        if self.device is not None:
            usb.util.dispose_resources(self.device)
        self.device = None
        self.endpoint = None


class SerialTransport(Transport):
    """Bluetooth (RFCOMM) or wired serial printer via pyserial"""

    kind = 'bluetooth'
    chunk_size = 20
    chunk_delay = 0.01

    def __init__(self, port: str, baudrate: int = 9600, timeout: float = 2):
        self.port = port
        self.baudrate = baudrate
        self.timeout = timeout
        self.ser = None

    def open(self):
        try:
            self.ser = serial.Serial(self.port, self.baudrate, timeout=self.timeout,
                                     write_timeout=self.timeout)
        except (serial.SerialException, ValueError) as e:
            raise TransportError(f"Serial port {self.port} unavailable: {e}") from e
        logger.info("Serial port %s opened", self.port)

    def _write_chunk(self, chunk: bytes):
        if self.ser is None:
            raise TransportError("Serial port not open")
        self.ser.write(chunk)
        time.sleep(self.chunk_delay)

    def write(self, data: bytes) -> bool:
        if not data:
            return True
        super().write(data)
        try:
            self.ser.flush()
        except serial.SerialException as e:
            raise TransportError(f"{self.kind} flush failed: {e}") from e
        return True

    def close(self):
        if self.ser is not None:
            try:
                self.ser.close()
            except serial.SerialException as e:
                logger.warning("Error closing serial port %s: %s", self.port, e)
        self.ser = None


class NetworkTransport(Transport):
    """Raw TCP printer (JetDirect, port 9100). One connection per job."""

    kind = 'network'

    def __init__(self, host: str, port: int = 9100, timeout: float = 5):
        self.host = host
        self.port = port
        self.timeout = timeout

    def open(self):
        pass

    def write(self, data: bytes) -> bool:
        try:
            with socket.create_connection((self.host, self.port), timeout=self.timeout) as conn:
                conn.sendall(data)
        except socket.timeout as e:
            raise TransportError(f"Connection timeout ({self.host}:{self.port})") from e
        except OSError as e:
            raise TransportError(f"Printer error ({self.host}:{self.port}): {e}") from e
        logger.info("Sent %d bytes to %s:%s", len(data), self.host, self.port)
        return True


def create_transport(descriptor: PrinterDescriptor) -> Transport:
    if descriptor.transport == 'usb':
        return UsbTransport(descriptor.vendor_id, descriptor.product_id)
    if descriptor.transport == 'bluetooth':
        if not descriptor.address:
            raise TransportError(f"Bluetooth printer {descriptor.name} has no port configured")
        return SerialTransport(descriptor.address)
    if descriptor.transport == 'network':
        if not descriptor.address:
            raise TransportError(f"Network printer {descriptor.name} has no address configured")
        return NetworkTransport(descriptor.address, descriptor.port)
    raise TransportError(f"Unsupported transport: {descriptor.transport}")


class ConnectionManager:
    """Caches open printer connections per printer id"""

    def __init__(self, factory=create_transport):
        self.factory = factory
        self.connections: Dict[str, Transport] = {}
        self.lock = threading.Lock()

    def connect(self, descriptor: PrinterDescriptor) -> Transport:
        """Return a live transport, opening one if needed. Raises TransportError."""
        with self.lock:
            transport = self.connections.get(descriptor.key)
            if transport is not None:
                return transport
            transport = self.factory(descriptor)
            transport.open()
            self.connections[descriptor.key] = transport
            return transport

    def resolve(self, descriptor: PrinterDescriptor) -> Optional[Transport]:
        """Like connect(), but None when the printer cannot be reached."""
        try:
            return self.connect(descriptor)
        except TransportError as e:
            logger.warning("Printer %s not reachable: %s", descriptor.name, e)
            return None

    def is_connected(self, printer_key: str) -> bool:
        return printer_key in self.connections

    def disconnect(self, printer_key: str):
        with self.lock:
            transport = self.connections.pop(printer_key, None)
        if transport is not None:
            transport.close()
            logger.info("Disconnected printer %s", printer_key)

    def disconnect_all(self):
        for key in list(self.connections):
            self.disconnect(key)

    def get_status(self) -> dict:
        return {key: t.kind for key, t in self.connections.items()}
