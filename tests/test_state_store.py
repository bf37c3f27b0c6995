# Tests for the SQLite state store

import pytest

from receipt_sync.state_store import StateStore


class TestStateStore:
    """Test SQLite state persistence"""

    @pytest.fixture(autouse=True)
    def _store(self, tmp_path):
        self.db_path = str(tmp_path / 'state.db')
        self.store = StateStore(self.db_path)

    def test_save_and_load(self):
        self.store.save_state('lastSyncedReceiptNo', 'ANN/S/12')

        assert StateStore(self.db_path).load_state('lastSyncedReceiptNo') == 'ANN/S/12'

    def test_load_default(self):
        assert self.store.load_state('missing', 7) == 7

    def test_save_many_json_values(self):
        self.store.save_many({'totalSynced': 4, 'failedReceipts': [{'receipt_no': 'S/1'}]})

        assert self.store.load_state('totalSynced') == 4
        assert self.store.load_state('failedReceipts') == [{'receipt_no': 'S/1'}]

    def test_delivery_log(self):
        self.store.log_delivery('S/1', 'created', record_id='r-1')
        self.store.log_delivery('S/2', 'failed', message='network: timeout')
        self.store.log_delivery('S/2', 'created', record_id='r-2')

        latest = self.store.get_deliveries(limit=1)
        assert latest[0]['receipt_no'] == 'S/2'
        assert latest[0]['outcome'] == 'created'
        assert len(self.store.get_deliveries('S/2')) == 2

    def test_delivery_counts(self):
        self.store.log_delivery('S/1', 'created', record_id='r-1')
        self.store.log_delivery('S/2', 'failed', message='network: timeout')
        self.store.log_delivery('S/2', 'created', record_id='r-2')
        self.store.log_delivery('S/3', 'already_exists')

        stats = self.store.get_stats()

        assert stats['created'] == 2
        assert stats['failed'] == 1
        assert stats['already_exists'] == 1
        assert stats['last_created_at'] is not None

    def test_delivery_counts_empty(self):
        assert StateStore(self.db_path).get_stats() == {'last_created_at': None}
