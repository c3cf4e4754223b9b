#!/usr/bin/env python3
"""
printcore - print queue server, local print agent and offline sync runner
"""

import argparse
import logging
import signal
import sys
import threading

from printcore.agent import LocalPrintAgent
from printcore.backend_client import BackendClient, StubBackendClient
from printcore.config import load_config
from printcore.local_store import LocalStore
from printcore.logging_config import setup_logging
from printcore.models import PrinterDescriptor
from printcore.offline_cache import OfflineCache
from printcore.queue_client import PrintQueueClient
from printcore.queue_server import QueueServer
from printcore.queue_store import PrintJobStore
from printcore.transports import ConnectionManager, TransportError
from printcore.dispatcher import PrintDispatcher


logger = logging.getLogger(__name__)


def _wait_for_shutdown() -> threading.Event:
    stop = threading.Event()
    signal.signal(signal.SIGINT, lambda *_: stop.set())
    signal.signal(signal.SIGTERM, lambda *_: stop.set())
    return stop


def run_queue_server(config: dict, args) -> int:
    store = PrintJobStore(config['queue_db_path'],
                          visibility_timeout=config['queue_visibility_timeout'])
    server = QueueServer(store, host=args.host or config['queue_host'],
                         port=args.port or config['queue_port'],
                         api_key=config['queue_api_key'])
    logger.info(f"Print queue at http://{args.host or config['queue_host']}:{server.port}/")
    try:
        server.serve_forever()
    except KeyboardInterrupt:
        logger.info("Stopping...")
    finally:
        server.httpd.server_close()
    return 0


def run_agent(config: dict, args) -> int:
    if not config['queue_url']:
        logger.error("queue_url is not configured")
        return 1
    client = PrintQueueClient(config['queue_url'], api_key=config['queue_api_key'])
    agent = LocalPrintAgent(client, config['printers'],
                            agent_id=args.agent_id or config['agent_id'],
                            poll_interval=config['queue_poll_interval'],
                            port=args.port or config['agent_port'],
                            currency_symbol=config['currency_symbol'])
    agent.start()
    stop = _wait_for_shutdown()
    stop.wait()
    agent.stop()
    return 0


def run_sync(config: dict, args) -> int:
    """Replay bills and KOTs queued while offline"""
    if config['backend_url']:
        backend = BackendClient(config['backend_url'], api_key=config['backend_api_key'])
    else:
        logger.warning("backend_url is not configured, using stub backend")
        backend = StubBackendClient()
    cache = OfflineCache(LocalStore(config['db_path']), backend)
    report = cache.drain()
    logger.info(f"Sync report: {report}")
    return 0 if not report['bills_failed'] and not report['kots_failed'] else 2


def run_test_print(config: dict, args) -> int:
    printers = [PrinterDescriptor.from_dict(p) for p in config['printers']]
    printer = next((p for p in printers if p.role == args.role), None)
    if printer is None:
        logger.error(f"No printer configured for role {args.role}")
        return 1
    dispatcher = PrintDispatcher(printers, ConnectionManager())
    try:
        dispatcher.test_print(printer)
    except TransportError as e:
        logger.error(f"Test print failed: {e}")
        return 1
    return 0


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description='printcore print queue and agent')
    parser.add_argument('--config', help='Path to config.json')
    parser.add_argument('--log-level', default='INFO')
    sub = parser.add_subparsers(dest='command', required=True)

    queue_parser = sub.add_parser('queue-server', help='Run the remote print job queue')
    queue_parser.add_argument('--host')
    queue_parser.add_argument('--port', type=int)
    queue_parser.set_defaults(func=run_queue_server)

    agent_parser = sub.add_parser('agent', help='Run the local print agent')
    agent_parser.add_argument('--agent-id')
    agent_parser.add_argument('--port', type=int, help='Health endpoint port (default: 8765)')
    agent_parser.set_defaults(func=run_agent)

    sync_parser = sub.add_parser('sync', help='Replay offline bills and KOTs')
    sync_parser.set_defaults(func=run_sync)

    test_parser = sub.add_parser('test-print', help='Send a diagnostic page to a printer')
    test_parser.add_argument('--role', default='counter')
    test_parser.set_defaults(func=run_test_print)

    args = parser.parse_args(argv)
    config = load_config(args.config)
    setup_logging(config['log_path'], level=args.log_level)
    return args.func(config, args)


if __name__ == '__main__':
    sys.exit(main())
