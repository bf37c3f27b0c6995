# Ledger Client - REST API client for the remote receipt ledger
# Handles the recent/check/create calls and classifies delivery failures

import requests
import logging
from typing import Dict, Any, Optional

from .config import LedgerConfig
from .errors import (
    DeliveryHttpError,
    DeliveryNetworkError,
    DeliveryRequestError,
)
from .models import DeliveryResult


logger = logging.getLogger(__name__)

USER_AGENT = 'Receipt-Sync-Agent/1.0'


def _join(base_url: str, path: str) -> str:
    if path.startswith(('http://', 'https://')):
        return path
    if not path.startswith('/'):
        path = '/' + path
    return f"{base_url}{path}"


class LedgerClient:
    """REST API client for the receipt ledger"""

    def __init__(self, config: LedgerConfig):
        if not config.base_url:
            raise ValueError('LedgerClient needs a base_url')
        self.base_url = config.base_url.rstrip('/')
        self.api_key = config.api_key
        self.timeout = config.timeout
        self.create_url = _join(self.base_url, config.create_path)
        self.check_url = _join(self.base_url, config.check_path)
        self.recent_url = _join(self.base_url, config.recent_path)
        self.already_exists_message = (config.already_exists_message or '').strip().lower()
        self.session = requests.Session()

        if self.api_key:
            self.session.headers.update({'x-api-key': self.api_key})

        self.session.headers.update({
            'Content-Type': 'application/json',
            'User-Agent': USER_AGENT,
        })

    def _is_already_exists(self, message: Any) -> bool:
        return bool(self.already_exists_message) and \
            str(message or '').strip().lower() == self.already_exists_message

    def get_recent_receipt_no(self) -> Optional[str]:
        """Most recent receipt number the ledger has ingested, or None"""
        response = self.session.get(self.recent_url, timeout=self.timeout)
        if response.status_code in (204, 404):
            return None
        response.raise_for_status()
        if not response.content.strip():
            return None
        data = response.json()
        if isinstance(data, dict):
            if isinstance(data.get('data'), dict):
                data = data['data']
            value = data.get('receiptNo') or data.get('lastReceiptNo')
        else:
            value = data
        return str(value).strip() if value else None

    def receipt_exists(self, receipt_no: str) -> bool:
        """Ask the ledger whether a receipt number is already ingested"""
        response = self.session.get(
            self.check_url,
            params={'receiptNo': receipt_no},
            timeout=self.timeout,
        )
        response.raise_for_status()
        data = response.json()
        if isinstance(data, dict):
            return bool(data.get('exists'))
        return bool(data)

    def create_receipt(self, payload: Dict[str, Any]) -> DeliveryResult:
        """
        POST one receipt. Returns a DeliveryResult for created and
        already-exists answers; raises a DeliveryError subclass otherwise.
        """
        receipt_no = payload.get('receiptDetails', {}).get('receiptNo')
        headers = {}
        if payload.get('apiKey'):
            headers['x-api-key'] = payload['apiKey']

        try:
            response = self.session.post(
                self.create_url,
                json=payload,
                headers=headers,
                timeout=self.timeout,
            )
        except (requests.exceptions.Timeout, requests.exceptions.ConnectionError) as e:
            raise DeliveryNetworkError(f"Network Error: No response from server ({e})")
        except (requests.exceptions.InvalidURL, requests.exceptions.MissingSchema,
                requests.exceptions.InvalidSchema, requests.exceptions.InvalidHeader,
                TypeError, ValueError) as e:
            raise DeliveryRequestError(f"Request Error: {e}")
        except requests.exceptions.RequestException as e:
            raise DeliveryNetworkError(f"Network Error: {e}")

        body = response.text[:1000]
        try:
            data = response.json()
        except ValueError:
            data = None
        message = data.get('message', '') if isinstance(data, dict) else ''

        if response.ok or response.status_code == 409:
            if self._is_already_exists(message):
                logger.info(f"Receipt {receipt_no} already exists on server")
                return DeliveryResult(created=False, already_exists=True, message=message)

        if not response.ok:
            raise DeliveryHttpError(
                f"API Error: {response.status_code} - {body}",
                status_code=response.status_code,
                body=body,
            )

        if not isinstance(data, dict):
            raise DeliveryHttpError(
                f"API Error: unreadable response body - {body}",
                status_code=response.status_code,
                body=body,
            )

        if data.get('created'):
            record_id = data.get('recordId')
            logger.info(f"Receipt {receipt_no} created on server")
            return DeliveryResult(
                created=True,
                record_id=str(record_id) if record_id is not None else None,
                message=message,
            )

        raise DeliveryHttpError(
            f"API Error: receipt not created - {message or body}",
            status_code=response.status_code,
            body=body,
        )

    def check_health(self) -> bool:
        """Check if server is reachable"""
        try:
            response = self.session.get(self.recent_url, timeout=5)
            return response.status_code < 500
        except requests.exceptions.RequestException:
            return False

    def close(self):
        self.session.close()


# Stub implementation for dry runs and tests
class StubLedgerClient:
    """In-memory ledger: never creates the same receipt twice"""

    def __init__(self, *args, **kwargs):
        self.records: Dict[str, Dict[str, Any]] = {}
        self.create_calls = 0
        self.last_receipt_no: Optional[str] = None

    def get_recent_receipt_no(self) -> Optional[str]:
        return self.last_receipt_no

    def receipt_exists(self, receipt_no: str) -> bool:
        return receipt_no in self.records

    def create_receipt(self, payload: Dict[str, Any]) -> DeliveryResult:
        self.create_calls += 1
        receipt_no = payload['receiptDetails']['receiptNo']
        if receipt_no in self.records:
            return DeliveryResult(created=False, already_exists=True, message='Receipt already exists')
        self.records[receipt_no] = payload
        self.last_receipt_no = receipt_no
        logger.info(f"[STUB] Created receipt {receipt_no}")
        return DeliveryResult(created=True, record_id=str(len(self.records)))

    def check_health(self) -> bool:
        return True

    def close(self):
        pass
