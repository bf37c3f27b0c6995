# State Store - SQLite persistence for the Receipt Sync Agent
# Holds the cursor, counters, retry queue snapshot and a delivery log

import sqlite3
import json
import threading
from datetime import datetime
from typing import List, Dict, Any, Optional


class StateStore:
    """SQLite-backed key-value state plus a delivery log"""

    DB_PATH = "receipt_sync_state.db"

    def __init__(self, db_path: str = None):
        self.db_path = db_path or self.DB_PATH
        self.lock = threading.Lock()
        self._init_db()

    def _connect(self):
        return sqlite3.connect(self.db_path, timeout=10)

    def _init_db(self):
        """Initialize database schema"""
        with self.lock:
            conn = self._connect()
            cursor = conn.cursor()

            cursor.execute('''
                CREATE TABLE IF NOT EXISTS state (
                    key TEXT PRIMARY KEY,
                    value TEXT,
                    updated_at TEXT
                )
            ''')

            # One row per delivery outcome
            cursor.execute('''
                CREATE TABLE IF NOT EXISTS sync_log (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    receipt_no TEXT NOT NULL,
                    outcome TEXT NOT NULL,
                    record_id TEXT,
                    message TEXT,
                    logged_at TEXT
                )
            ''')
            cursor.execute('''
                CREATE INDEX IF NOT EXISTS idx_sync_log_receipt ON sync_log (receipt_no)
            ''')

            conn.commit()
            conn.close()

    def save_state(self, key: str, value: Any):
        """Save state key-value"""
        self.save_many({key: value})

    def save_many(self, values: Dict[str, Any]):
        """Save several keys in one transaction"""
        now = datetime.now().isoformat()
        with self.lock:
            conn = self._connect()
            try:
                conn.executemany('''
                    INSERT OR REPLACE INTO state (key, value, updated_at)
                    VALUES (?, ?, ?)
                ''', [(key, json.dumps(value), now) for key, value in values.items()])
                conn.commit()
            finally:
                conn.close()

    def load_state(self, key: str, default: Any = None) -> Any:
        """Load state value"""
        with self.lock:
            conn = self._connect()
            try:
                row = conn.execute('SELECT value FROM state WHERE key = ?', (key,)).fetchone()
            finally:
                conn.close()

        if row is None or row[0] is None:
            return default
        try:
            return json.loads(row[0])
        except ValueError:
            return row[0]

    def log_delivery(self, receipt_no: str, outcome: str,
                     record_id: Optional[str] = None, message: str = ''):
        """Record one delivery outcome (created, already_exists, failed, skipped)"""
        with self.lock:
            conn = self._connect()
            try:
                conn.execute('''
                    INSERT INTO sync_log (receipt_no, outcome, record_id, message, logged_at)
                    VALUES (?, ?, ?, ?, ?)
                ''', (receipt_no, outcome, record_id, message, datetime.now().isoformat()))
                conn.commit()
            finally:
                conn.close()

    def get_deliveries(self, receipt_no: str = None, limit: int = 50) -> List[Dict]:
        """Most recent delivery log rows, newest first"""
        with self.lock:
            conn = self._connect()
            conn.row_factory = sqlite3.Row
            try:
                if receipt_no:
                    rows = conn.execute('''
                        SELECT * FROM sync_log WHERE receipt_no = ?
                        ORDER BY id DESC LIMIT ?
                    ''', (receipt_no, limit)).fetchall()
                else:
                    rows = conn.execute('''
                        SELECT * FROM sync_log ORDER BY id DESC LIMIT ?
                    ''', (limit,)).fetchall()
            finally:
                conn.close()
        return [dict(row) for row in rows]

    def get_stats(self) -> Dict:
        """Delivery log counts by outcome"""
        with self.lock:
            conn = self._connect()
            try:
                rows = conn.execute('''
                    SELECT outcome, COUNT(*) FROM sync_log GROUP BY outcome
                ''').fetchall()
                last = conn.execute('''
                    SELECT MAX(logged_at) FROM sync_log WHERE outcome = 'created'
                ''').fetchone()[0]
            finally:
                conn.close()
        stats = {outcome: count for outcome, count in rows}
        stats['last_created_at'] = last
        return stats
