# Tests for the sync cursor and watermark resolution

from datetime import datetime

import pytest

from receipt_sync.cursor import Cursor
from receipt_sync.errors import InvalidReceiptNumber
from receipt_sync.models import Watermark
from receipt_sync.state_store import StateStore


class MockLedger:
    def __init__(self, recent=None, fail_recent=False):
        self.recent = recent
        self.fail_recent = fail_recent

    def get_recent_receipt_no(self):
        if self.fail_recent:
            raise ConnectionError('ledger down')
        return self.recent


class TestCursor:
    """Test cursor ordering and persistence"""

    @pytest.fixture(autouse=True)
    def _store(self, tmp_path):
        self.store = StateStore(str(tmp_path / 'state.db'))

    def test_empty_cursor_accepts_anything(self):
        cursor = Cursor(self.store)

        assert cursor.watermark is None
        assert cursor.advance('S/5', datetime(2024, 3, 1))

    def test_only_moves_forward(self):
        cursor = Cursor(self.store)
        cursor.advance('S/5', datetime(2024, 3, 1, 10))

        assert not cursor.advance('S/4', datetime(2024, 3, 1, 9))
        assert not cursor.advance('S/5', datetime(2024, 3, 1, 10))
        assert cursor.receipt_no == 'S/5'

    def test_date_decides_before_sequence(self):
        cursor = Cursor(self.store)
        cursor.advance('S/900', datetime(2024, 3, 1))

        # Counter reset on a new day
        assert cursor.advance('S/1', datetime(2024, 3, 2))
        assert cursor.receipt_no == 'S/1'

    def test_sequence_decides_without_dates(self):
        cursor = Cursor(self.store)
        cursor.advance('S/9')

        assert not cursor.advance('S/8')
        assert cursor.advance('S/10')

    def test_malformed_candidate_is_not_applied(self):
        cursor = Cursor(self.store)
        cursor.advance('S/9')

        with pytest.raises(InvalidReceiptNumber):
            cursor.is_newer('S/X')
        assert not cursor.advance('S/X')
        assert cursor.receipt_no == 'S/9'

    def test_skip_past_orderable_receipt(self):
        cursor = Cursor(self.store)
        cursor.advance('ANN/S/0', datetime(2024, 3, 1, 10))

        assert cursor.skip_past('XYZ/S/3', datetime(2024, 3, 1, 10, 3))
        assert cursor.watermark == Watermark('XYZ/S/3', datetime(2024, 3, 1, 10, 3))

    def test_skip_past_unorderable_moves_date_only(self):
        cursor = Cursor(self.store)
        cursor.advance('S/9', datetime(2024, 3, 1, 10))

        assert cursor.skip_past('S/X', datetime(2024, 3, 1, 11))
        assert not cursor.skip_past('S/Y', datetime(2024, 3, 1, 10, 30))
        assert cursor.watermark == Watermark('S/9', datetime(2024, 3, 1, 11))
        assert Cursor(self.store).date == datetime(2024, 3, 1, 11)

    def test_skip_past_needs_a_position(self):
        cursor = Cursor(self.store)

        assert not cursor.skip_past('S/X', datetime(2024, 3, 1))
        assert cursor.watermark is None

    def test_survives_restart(self):
        Cursor(self.store).advance('S/7', datetime(2024, 3, 1, 11, 30))

        cursor = Cursor(self.store)

        assert cursor.watermark == Watermark('S/7', datetime(2024, 3, 1, 11, 30))


class TestResolveWatermark:
    """Test remote vs local watermark"""

    @pytest.fixture(autouse=True)
    def _store(self, tmp_path):
        self.store = StateStore(str(tmp_path / 'state.db'))

    def test_fail_closed_without_any_watermark(self):
        cursor = Cursor(self.store)

        assert cursor.resolve_watermark(MockLedger(recent=None)) is None

    def test_remote_wins(self):
        cursor = Cursor(self.store)
        cursor.advance('S/3', datetime(2024, 3, 1))

        watermark = cursor.resolve_watermark(MockLedger(recent='S/8'))

        assert watermark == Watermark('S/8')
        assert self.store.load_state(Cursor.SERVER_KEY) == 'S/8'
        assert cursor.receipt_no == 'S/8'

    def test_older_remote_keeps_local_bound(self):
        cursor = Cursor(self.store)
        cursor.advance('S/10', datetime(2024, 3, 1, 10))

        watermark = cursor.resolve_watermark(MockLedger(recent='S/4'))

        assert watermark == Watermark('S/10', datetime(2024, 3, 1, 10))
        assert cursor.receipt_no == 'S/10'
        assert self.store.load_state(Cursor.SERVER_KEY) == 'S/4'

    def test_malformed_remote_without_local_still_bounds(self):
        cursor = Cursor(self.store)

        assert cursor.resolve_watermark(MockLedger(recent='S/X')) == Watermark('S/X')
        assert cursor.receipt_no is None

    def test_same_remote_keeps_local_date(self):
        cursor = Cursor(self.store)
        cursor.advance('S/3', datetime(2024, 3, 1, 9))

        watermark = cursor.resolve_watermark(MockLedger(recent='S/3'))

        assert watermark.date == datetime(2024, 3, 1, 9)

    def test_remote_failure_falls_back_to_local(self):
        cursor = Cursor(self.store)
        cursor.advance('S/3')

        assert cursor.resolve_watermark(MockLedger(fail_recent=True)) == Watermark('S/3')
