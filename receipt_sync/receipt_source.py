# Receipt Source - contract every POS adapter implements
# Adapters map vendor rows onto RawReceiptLeg / LineItem

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.exc import SQLAlchemyError

from .config import SourceConfig
from .errors import SourceUnavailable
from .models import LineItem, RawReceiptLeg, Watermark


logger = logging.getLogger(__name__)


class ReceiptSource(ABC):
    """
    Read side of a POS database.

    fetch_recent must only return rows strictly newer than the watermark and
    must return [] when the watermark is missing or cannot be located, never
    scan the whole table. Database failures surface as SourceUnavailable.
    """

    pos_type = 'BASE'

    def __init__(self, engine: Engine, batch_size: int = 50):
        self.engine = engine
        self.batch_size = batch_size

    @abstractmethod
    def fetch_recent(self, watermark: Optional[Watermark]) -> List[RawReceiptLeg]:
        ...

    @abstractmethod
    def fetch_items(self, group_row_id: str) -> List[LineItem]:
        ...

    @abstractmethod
    def fetch_single(self, receipt_no: str) -> List[RawReceiptLeg]:
        ...

    def _query(self, statement, params: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        """Run one statement and return plain dict rows"""
        if isinstance(statement, str):
            statement = text(statement)
        try:
            with self.engine.connect() as conn:
                return [dict(row) for row in conn.execute(statement, params or {}).mappings()]
        except SQLAlchemyError as e:
            raise SourceUnavailable(f"{self.pos_type} query failed: {e}") from e

    def check_health(self) -> bool:
        """Check if the database answers"""
        try:
            self._query('SELECT 1')
            return True
        except SourceUnavailable as e:
            logger.warning(f"Database health check failed: {e}")
            return False

    def close(self):
        self.engine.dispose()


def drop_partial_tail(legs: List[RawReceiptLeg], limit: int) -> List[RawReceiptLeg]:
    """
    When a LIMIT cut the result, the last receipt may be missing legs.
    Drop it so it is fetched whole next cycle, unless it is the only receipt.
    """
    if not legs or len(legs) < limit:
        return legs
    last_no = legs[-1].receipt_no
    trimmed = [leg for leg in legs if leg.receipt_no != last_no]
    return trimmed or legs


def build_engine(config: SourceConfig) -> Engine:
    url = make_url(config.sqlalchemy_url())
    connect_args = {}
    if url.drivername.startswith('sqlite'):
        connect_args = {'check_same_thread': False}
    elif url.drivername == 'mssql+pyodbc':
        connect_args = {'timeout': config.timeout}
    return create_engine(url, connect_args=connect_args, pool_pre_ping=True)


def create_source(config: SourceConfig, engine: Optional[Engine] = None) -> ReceiptSource:
    """Pick the adapter for the configured POS type"""
    from .generic_source import GenericSource
    from .hdpos_source import HDPOSSource
    from .quickbill_source import QuickBillSource

    adapters = {
        'HDPOS': HDPOSSource,
        'QUICKBILL': QuickBillSource,
        'GENERIC': GenericSource,
    }
    pos_type = (config.pos_type or '').upper()
    if pos_type not in adapters:
        raise ValueError(f"Unsupported POS type: {config.pos_type}")
    engine = engine or build_engine(config)
    logger.info(f"Using {pos_type} receipt source")
    return adapters[pos_type](engine, batch_size=config.batch_size)
