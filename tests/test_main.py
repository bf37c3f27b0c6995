# Tests for the agent wiring and the local control API

import threading
from datetime import datetime
from http.server import ThreadingHTTPServer

import pytest
import requests

from main import Handler, SyncAgent
from receipt_sync.config import AgentConfig
from receipt_sync.generic_source import metadata, receipt_legs
from receipt_sync.ledger_client import StubLedgerClient


class TestControlServer:
    """Test the JSON control endpoints against a SQLite POS and the stub ledger"""

    @pytest.fixture(autouse=True)
    def _agent(self, tmp_path):
        config = AgentConfig()
        config.source.pos_type = 'GENERIC'
        config.source.database_url = f"sqlite:///{tmp_path / 'pos.db'}"
        config.state_db_path = str(tmp_path / 'state.db')
        config.sync.enabled = False

        self.agent = SyncAgent(config)
        metadata.create_all(self.agent.source.engine)
        with self.agent.source.engine.begin() as conn:
            conn.execute(receipt_legs.insert(), [
                {'receipt_no': 'ANN/S/1', 'receipt_date': datetime(2024, 3, 1, 10), 'total_amount': 50,
                 'pay_method': 'CASH', 'pay_amount': 50, 'source_row_id': '1'},
                {'receipt_no': 'ANN/S/2', 'receipt_date': datetime(2024, 3, 1, 11), 'total_amount': 70,
                 'pay_method': 'UPI', 'pay_amount': 70, 'source_row_id': '2'},
            ])

        self.server = ThreadingHTTPServer(('127.0.0.1', 0), Handler)
        self.server.agent = self.agent
        self.thread = threading.Thread(target=self.server.serve_forever, daemon=True)
        self.thread.start()
        self.base = f"http://127.0.0.1:{self.server.server_address[1]}"
        yield
        self.server.shutdown()
        self.server.server_close()
        self.agent.stop()

    def test_dry_run_uses_stub_ledger(self):
        assert isinstance(self.agent.ledger, StubLedgerClient)

    def test_status(self):
        data = requests.get(f"{self.base}/status", timeout=5).json()

        assert data['stats']['totalSynced'] == 0
        assert data['posType'] == 'GENERIC'
        assert data['cursor']['lastSyncedReceiptNo'] is None
        assert data['deliveryLog'] == {'last_created_at': None}

    def test_health(self):
        data = requests.get(f"{self.base}/health", timeout=5).json()

        assert data == {'source': True, 'ledger': True}

    def test_manual_sync(self):
        response = requests.post(f"{self.base}/sync", params={'receipt': 'ANN/S/2'}, timeout=5)

        assert response.status_code == 200
        assert response.json()['success']
        assert 'ANN/S/2' in self.agent.ledger.records

        status = requests.get(f"{self.base}/status", timeout=5).json()
        assert status['stats']['totalSynced'] == 1
        assert status['recentDeliveries'][0]['receipt_no'] == 'ANN/S/2'
        assert status['deliveryLog']['created'] == 1
        assert status['deliveryLog']['last_created_at'] is not None

    def test_manual_sync_unknown_receipt(self):
        response = requests.post(f"{self.base}/sync", params={'receipt': 'ANN/S/99'}, timeout=5)

        assert response.status_code == 422
        assert not response.json()['success']

    def test_trigger_sync(self):
        response = requests.post(f"{self.base}/sync", timeout=5)

        assert response.status_code == 202
        assert response.json()['success']

    def test_sync_while_busy(self):
        self.agent.engine._cycle_lock.acquire()
        try:
            triggered = requests.post(f"{self.base}/sync", timeout=5)
            manual = requests.post(f"{self.base}/sync", params={'receipt': 'ANN/S/2'}, timeout=5)
        finally:
            self.agent.engine._cycle_lock.release()

        assert triggered.status_code == 409
        assert triggered.json() == {'success': False, 'message': 'Sync already in progress'}
        assert manual.status_code == 409
        assert 'ANN/S/2' not in self.agent.ledger.records

    def test_unknown_path(self):
        assert requests.get(f"{self.base}/nope", timeout=5).status_code == 404
