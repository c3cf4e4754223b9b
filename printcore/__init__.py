# printcore
# Thermal printing, remote print queue and offline replay for a restaurant POS

__version__ = '0.1.0'

from .models import PrinterDescriptor, TicketItem, KOTPayload, BillPayload, PrintResult
from .escpos_builder import ESCPOSBuilder
from .raster import image_to_raster, RasterError
from .templates import generate_kot_commands, generate_bill_commands
from .kot_counter import KOTNumberManager
from .local_store import LocalStore
from .transports import ConnectionManager, TransportError
from .browser_print import RenderedView
from .dispatcher import PrintDispatcher
from .queue_store import PrintJobStore, QueueError
from .queue_server import QueueServer
from .queue_client import PrintQueueClient, check_local_agent
from .backend_client import BackendClient, StubBackendClient, BackendError
from .offline_cache import OfflineCache, PendingBill, PendingKOT
from .agent import LocalPrintAgent

__all__ = [
    'PrinterDescriptor',
    'TicketItem',
    'KOTPayload',
    'BillPayload',
    'PrintResult',
    'ESCPOSBuilder',
    'image_to_raster',
    'RasterError',
    'generate_kot_commands',
    'generate_bill_commands',
    'KOTNumberManager',
    'LocalStore',
    'ConnectionManager',
    'TransportError',
    'RenderedView',
    'PrintDispatcher',
    'PrintJobStore',
    'QueueError',
    'QueueServer',
    'PrintQueueClient',
    'check_local_agent',
    'BackendClient',
    'StubBackendClient',
    'BackendError',
    'OfflineCache',
    'PendingBill',
    'PendingKOT',
    'LocalPrintAgent',
]
