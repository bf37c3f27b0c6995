# Receipt Sync Agent
# Incremental POS receipt sync to a remote receipt ledger

__version__ = '0.1.0'

from .config import AgentConfig, load_config
from .cursor import Cursor
from .errors import (
    SyncError,
    SourceUnavailable,
    ValidationRejected,
    DeliveryError,
    DeliveryNetworkError,
    DeliveryHttpError,
    DeliveryRequestError,
)
from .ledger_client import LedgerClient, StubLedgerClient
from .models import RawReceiptLeg, ReceiptGroup, LineItem, Watermark, SyncStats
from .receipt_filter import ReceiptFilter
from .receipt_source import ReceiptSource, create_source
from .retry_queue import RetryQueue
from .state_store import StateStore
from .sync_engine import SyncEngine
from .transformer import transform

__all__ = [
    'AgentConfig',
    'load_config',
    'Cursor',
    'SyncError',
    'SourceUnavailable',
    'ValidationRejected',
    'DeliveryError',
    'DeliveryNetworkError',
    'DeliveryHttpError',
    'DeliveryRequestError',
    'LedgerClient',
    'StubLedgerClient',
    'RawReceiptLeg',
    'ReceiptGroup',
    'LineItem',
    'Watermark',
    'SyncStats',
    'ReceiptFilter',
    'ReceiptSource',
    'create_source',
    'RetryQueue',
    'StateStore',
    'SyncEngine',
    'transform',
]
