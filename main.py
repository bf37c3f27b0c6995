#!/usr/bin/env python3
"""
Receipt Sync Agent - background sync with a local JSON control API
"""

import argparse
import json
import logging
import sys
import threading
from http.server import ThreadingHTTPServer, BaseHTTPRequestHandler
from pathlib import Path
from urllib.parse import urlparse, parse_qs

from receipt_sync.config import AgentConfig, load_config
from receipt_sync.errors import ConfigError
from receipt_sync.ledger_client import LedgerClient, StubLedgerClient
from receipt_sync.logging_config import setup_logging
from receipt_sync.receipt_source import create_source
from receipt_sync.state_store import StateStore
from receipt_sync.sync_engine import SyncEngine


logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path(__file__).parent / 'config.json'


class SyncAgent:
    """Wires config, store, source, ledger and engine together"""

    def __init__(self, config: AgentConfig):
        self.config = config
        self.last_alert = None
        self.status = 'stopped'
        self.store = StateStore(config.state_db_path)
        self.source = create_source(config.source)
        if config.ledger.base_url:
            self.ledger = LedgerClient(config.ledger)
        else:
            logger.warning('RECEIPT_API_URL not set - running against in-memory stub ledger (dry run)')
            self.ledger = StubLedgerClient()
        self.engine = SyncEngine(
            self.source,
            self.ledger,
            self.store,
            settings=config.sync,
            api_key=config.ledger.api_key,
            on_status=self._on_status,
        )

    def _on_status(self, status: str):
        if status != self.status:
            logger.info(f"Sync status: {self.status} -> {status}")
        self.status = status

    def on_error_alert(self, message: str, level: str):
        self.last_alert = {'message': message, 'level': level}

    def start(self):
        self.engine.start()

    def stop(self):
        self.engine.stop()
        self.source.close()
        self.ledger.close()

    def get_status(self):
        return {
            'stats': self.engine.get_stats().to_dict(),
            'running': self.engine.running,
            'posType': self.config.source.pos_type,
            'cursor': {
                'lastSyncedReceiptNo': self.engine.cursor.receipt_no,
                'lastSyncedReceiptDate': self.engine.cursor.date.isoformat() if self.engine.cursor.date else None,
                'lastReceiptOnServer': self.engine.cursor.server_receipt_no,
            },
            'recentDeliveries': self.store.get_deliveries(limit=10),
            'deliveryLog': self.store.get_stats(),
            'lastAlert': self.last_alert,
        }


class Handler(BaseHTTPRequestHandler):
    """Control API consumed by the desktop shell"""

    def _send_json(self, code: int, body):
        data = json.dumps(body, default=str).encode()
        self.send_response(code)
        self.send_header('Content-type', 'application/json')
        self.send_header('Content-Length', str(len(data)))
        self.end_headers()
        self.wfile.write(data)

    def do_GET(self):
        agent = self.server.agent
        path = urlparse(self.path).path
        if path == '/status':
            self._send_json(200, agent.get_status())
        elif path == '/health':
            self._send_json(200, agent.engine.check_health())
        else:
            self._send_json(404, {'error': 'not found'})

    def do_POST(self):
        agent = self.server.agent
        url = urlparse(self.path)
        if url.path == '/sync':
            if agent.engine.get_stats().is_syncing:
                self._send_json(409, {'success': False, 'message': 'Sync already in progress'})
                return
            receipt = parse_qs(url.query).get('receipt', [None])[0]
            if receipt:
                result = agent.engine.force_manual_sync(receipt)
                self._send_json(200 if result['success'] else 422, result)
                return
            threading.Thread(target=agent.engine.force_sync_now, daemon=True).start()
            self._send_json(202, {'success': True, 'message': 'Sync triggered'})
        else:
            self._send_json(404, {'error': 'not found'})

    def log_message(self, format, *args):
        logger.debug("%s - %s", self.address_string(), format % args)


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description='Sync POS receipts to the remote receipt ledger')
    parser.add_argument('--config', type=Path, default=DEFAULT_CONFIG_PATH, help='path to config.json')
    parser.add_argument('--port', type=int, help='control API port (default from config, 8080)')
    parser.add_argument('--once', action='store_true', help='run a single sync cycle and exit')
    parser.add_argument('--receipt', help='sync one receipt number and exit')
    return parser.parse_args(argv)


def main(argv=None):
    args = parse_args(argv)
    try:
        config = load_config(args.config)
    except ConfigError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 2

    agent_ref = {}
    log_file = setup_logging(
        config.logging,
        alert_callback=lambda msg, level: agent_ref['agent'].on_error_alert(msg, level) if agent_ref else None,
    )

    problems = config.validate()
    if problems:
        for problem in problems:
            logger.error(f"Configuration: {problem}")
        return 2

    agent = SyncAgent(config)
    agent_ref['agent'] = agent

    if args.receipt:
        result = agent.engine.force_manual_sync(args.receipt)
        print(json.dumps(result))
        agent.stop()
        return 0 if result['success'] else 1

    if args.once:
        agent.engine.force_sync_now()
        print(json.dumps(agent.engine.get_stats().to_dict()))
        agent.stop()
        return 0

    port = args.port or config.control_port
    server = ThreadingHTTPServer(('127.0.0.1', port), Handler)
    server.agent = agent
    agent.start()

    logger.info(f"Receipt Sync Agent running - control API http://127.0.0.1:{port}, logs {log_file}")
    try:
        server.serve_forever()
    except KeyboardInterrupt:
        logger.info('Stopping...')
    finally:
        server.server_close()
        agent.stop()
    return 0


if __name__ == '__main__':
    sys.exit(main())
