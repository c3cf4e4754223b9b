# Print Dispatcher - route a finished print job to the best available path
# Direct thermal -> browser print -> remote queue, each tried in order

import logging
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Union

from .browser_print import RenderedView, print_with_browser
from .escpos_builder import build_test_page
from .models import BillPayload, KOTPayload, PrinterDescriptor, PrintResult
from .raster import RasterError, image_to_raster
from .templates import generate_bill_commands, generate_kot_commands
from .transports import ConnectionManager, TransportError

logger = logging.getLogger(__name__)


NO_PRINT_METHOD = 'No print method available'


@dataclass
class PrintRequest:
    """Everything a strategy may need for one attempt"""
    descriptor: PrinterDescriptor
    commands: bytes
    fallback: Optional[RenderedView] = None
    job_type: Optional[str] = None
    payload: Dict[str, Any] = field(default_factory=dict)


class DirectTransportStrategy:
    """Write ESC/POS bytes straight to a USB or Bluetooth printer"""

    method = 'thermal'

    def __init__(self, connections: ConnectionManager):
        self.connections = connections

    def attempt(self, request: PrintRequest) -> Optional[PrintResult]:
        descriptor = request.descriptor
        if not descriptor.is_direct:
            return None
        transport = self.connections.resolve(descriptor)
        if transport is None:
            return None
        try:
            if transport.write(request.commands):
                return PrintResult(True, self.method)
            logger.warning(f"Printer {descriptor.name} rejected the job")
        except Exception as e:
            # A dead connection is dropped so the next job reopens it
            logger.warning(f"Direct print to {descriptor.name} failed: {e}")
            self.connections.disconnect(descriptor.key)
        return None


class BrowserPrintStrategy:
    """Print the UI's rendered view through the browser"""

    method = 'browser'

    def __init__(self, opener=None):
        self.opener = opener

    def attempt(self, request: PrintRequest) -> Optional[PrintResult]:
        if request.fallback is None:
            return None
        try:
            print_with_browser(request.fallback, request.descriptor.paper_format,
                               opener=self.opener)
        except Exception as e:
            logger.warning(f"Browser print failed: {e}")
            return None
        return PrintResult(True, self.method)


class QueueStrategy:
    """Hand the job to the remote queue for a Local Print Agent"""

    method = 'queue'

    def __init__(self, queue_client):
        self.queue_client = queue_client

    def attempt(self, request: PrintRequest) -> Optional[PrintResult]:
        if not request.job_type or not request.payload:
            return None
        result = self.queue_client.submit(request.job_type, request.payload,
                                          request.descriptor.role)
        if result.get('success'):
            return PrintResult(True, self.method, job_id=result.get('job_id'))
        logger.warning(f"Queue submission failed: {result.get('error')}")
        return None


class PrintDispatcher:
    """Tries each strategy in order; the first success wins.

    Every call resolves to a PrintResult. Only test_print() raises.
    """

    def __init__(self, printers: Iterable[Union[PrinterDescriptor, Dict]] = (),
                 connections: Optional[ConnectionManager] = None,
                 queue_client=None, browser_opener=None,
                 currency_symbol: str = '', kot_numbers=None):
        self.printers: List[PrinterDescriptor] = [
            p if isinstance(p, PrinterDescriptor) else PrinterDescriptor.from_dict(p)
            for p in printers
        ]
        self.connections = connections or ConnectionManager()
        self.currency_symbol = currency_symbol
        self.kot_numbers = kot_numbers
        self.strategies = [
            DirectTransportStrategy(self.connections),
            BrowserPrintStrategy(browser_opener),
        ]
        if queue_client is not None:
            self.strategies.append(QueueStrategy(queue_client))

    def get_printer(self, role: str) -> Optional[PrinterDescriptor]:
        """Printer for a role; falls back to the counter printer, then any printer."""
        for wanted in (role, 'counter'):
            for printer in self.printers:
                if printer.role == wanted:
                    return printer
        return self.printers[0] if self.printers else None

    def dispatch(self, descriptor: Optional[PrinterDescriptor], commands: bytes,
                 fallback: Optional[RenderedView] = None,
                 job_type: Optional[str] = None, payload: Optional[Dict] = None) -> PrintResult:
        if descriptor is None:
            descriptor = PrinterDescriptor(name='Browser', transport='none')
        request = PrintRequest(descriptor, commands, fallback, job_type, payload or {})

        for strategy in self.strategies:
            try:
                result = strategy.attempt(request)
            except Exception as e:
                logger.warning(f"{strategy.method} print path failed: {e}")
                continue
            if result is not None:
                logger.info(f"Printed via {result.method} on {descriptor.name}")
                return result

        logger.error(f"No print method available for {descriptor.name}")
        return PrintResult(False, 'browser', NO_PRINT_METHOD)

    def print_kot(self, data: Union[KOTPayload, Dict], role: str = 'kitchen',
                  fallback: Optional[RenderedView] = None) -> PrintResult:
        kot = data if isinstance(data, KOTPayload) else KOTPayload.from_dict(data)
        if kot.kot_number is None and self.kot_numbers is not None:
            kot = replace(kot, kot_number=self.kot_numbers.next())
        payload = _with_kot_number(data, kot) if isinstance(data, dict) else kot.to_dict()

        printer = self.get_printer(role)
        paper_format = printer.paper_format if printer else '80mm'
        commands = generate_kot_commands(kot, paper_format)
        return self.dispatch(printer, commands, fallback, 'kot', payload)

    def print_bill(self, data: Union[BillPayload, Dict], role: str = 'counter',
                   fallback: Optional[RenderedView] = None) -> PrintResult:
        bill = data if isinstance(data, BillPayload) else BillPayload.from_dict(data)
        payload = data if isinstance(data, dict) else bill.to_dict()

        printer = self.get_printer(role)
        paper_format = printer.paper_format if printer else '80mm'
        commands = generate_bill_commands(bill, paper_format, self.currency_symbol)
        return self.dispatch(printer, commands, fallback, 'bill', payload)

    def print_image(self, descriptor: PrinterDescriptor, surface, width: int = None,
                    height: int = None, fallback: Optional[RenderedView] = None) -> PrintResult:
        """Rasterize a rendered surface and dispatch it. A bad surface sends nothing."""
        try:
            commands = image_to_raster(surface, width, height)
        except RasterError as e:
            logger.error(f"Cannot rasterize image for {descriptor.name}: {e}")
            return PrintResult(False, 'thermal', str(e))
        return self.dispatch(descriptor, commands, fallback)

    def test_print(self, descriptor: PrinterDescriptor, business_name: Optional[str] = None) -> bool:
        """Send the diagnostic page directly. Transport errors propagate to the caller."""
        commands = build_test_page(descriptor.name, descriptor.transport,
                                   descriptor.paper_format, descriptor.role, business_name,
                                   datetime.now().strftime('%d/%m/%Y %H:%M:%S'))
        transport = self.connections.connect(descriptor)
        try:
            transport.write(commands)
        except TransportError:
            self.connections.disconnect(descriptor.key)
            raise
        logger.info(f"Test print sent to {descriptor.name}")
        return True


def _with_kot_number(payload: Dict, kot: KOTPayload) -> Dict:
    if kot.kot_number is None:
        return payload
    return dict(payload, kot_number=kot.kot_number)
