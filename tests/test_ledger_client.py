# Tests for the ledger REST client

from unittest.mock import MagicMock

import pytest
import requests

from receipt_sync.config import LedgerConfig
from receipt_sync.errors import DeliveryHttpError, DeliveryNetworkError, DeliveryRequestError
from receipt_sync.ledger_client import LedgerClient, StubLedgerClient


def make_response(status_code=200, json_data=None, text=None):
    response = MagicMock()
    response.status_code = status_code
    response.ok = 200 <= status_code < 300
    if json_data is None:
        response.json.side_effect = ValueError('no json')
        response.text = text or ''
    else:
        response.json.return_value = json_data
        response.text = text if text is not None else str(json_data)
    response.content = response.text.encode()

    def raise_for_status():
        if status_code >= 400:
            raise requests.exceptions.HTTPError(f"{status_code} Error")
    response.raise_for_status.side_effect = raise_for_status
    return response


PAYLOAD = {'receiptDetails': {'receiptNo': 'ANN/S/5'}, 'apiKey': 'store-key'}


class TestLedgerClient:
    """Test delivery outcome classification"""

    def setup_method(self):
        self.client = LedgerClient(LedgerConfig(base_url='https://ledger.example/', api_key='agent-key'))
        self.client.session = MagicMock()

    def test_created(self):
        self.client.session.post.return_value = make_response(201, {'created': True, 'recordId': 42})

        result = self.client.create_receipt(PAYLOAD)

        assert result.created
        assert result.record_id == '42'
        args, kwargs = self.client.session.post.call_args
        assert args[0] == 'https://ledger.example/api/v1/receipts'
        assert kwargs['headers'] == {'x-api-key': 'store-key'}
        assert kwargs['json'] is PAYLOAD

    def test_already_exists_on_2xx(self):
        self.client.session.post.return_value = make_response(200, {'message': 'Receipt already exists'})

        result = self.client.create_receipt(PAYLOAD)

        assert not result.created
        assert result.already_exists

    def test_already_exists_on_409(self):
        self.client.session.post.return_value = make_response(409, {'message': 'receipt already exists '})

        assert self.client.create_receipt(PAYLOAD).already_exists

    def test_http_error_carries_status_and_body(self):
        self.client.session.post.return_value = make_response(500, text='Internal Server Error')

        with pytest.raises(DeliveryHttpError) as exc:
            self.client.create_receipt(PAYLOAD)

        assert exc.value.status_code == 500
        assert exc.value.body == 'Internal Server Error'
        assert exc.value.kind == 'http'

    def test_2xx_application_failure(self):
        self.client.session.post.return_value = make_response(200, {'created': False, 'message': 'bad gst'})

        with pytest.raises(DeliveryHttpError):
            self.client.create_receipt(PAYLOAD)

    def test_timeout_is_network(self):
        self.client.session.post.side_effect = requests.exceptions.Timeout('read timed out')

        with pytest.raises(DeliveryNetworkError) as exc:
            self.client.create_receipt(PAYLOAD)

        assert exc.value.kind == 'network'

    def test_connection_error_is_network(self):
        self.client.session.post.side_effect = requests.exceptions.ConnectionError('refused')

        with pytest.raises(DeliveryNetworkError):
            self.client.create_receipt(PAYLOAD)

    def test_bad_url_is_request_error(self):
        self.client.session.post.side_effect = requests.exceptions.MissingSchema('no schema')

        with pytest.raises(DeliveryRequestError) as exc:
            self.client.create_receipt(PAYLOAD)

        assert exc.value.kind == 'request'

    def test_recent_receipt_no(self):
        self.client.session.get.return_value = make_response(200, {'data': {'receiptNo': 'ANN/S/9'}})

        assert self.client.get_recent_receipt_no() == 'ANN/S/9'

    def test_recent_receipt_none_on_404(self):
        self.client.session.get.return_value = make_response(404, {'message': 'none'})

        assert self.client.get_recent_receipt_no() is None

    def test_receipt_exists(self):
        self.client.session.get.return_value = make_response(200, {'exists': True})

        assert self.client.receipt_exists('ANN/S/9')
        _, kwargs = self.client.session.get.call_args
        assert kwargs['params'] == {'receiptNo': 'ANN/S/9'}

    def test_receipt_exists_raises_on_error(self):
        self.client.session.get.return_value = make_response(503, text='unavailable')

        with pytest.raises(requests.exceptions.HTTPError):
            self.client.receipt_exists('ANN/S/9')

    def test_health(self):
        self.client.session.get.return_value = make_response(200, {})
        assert self.client.check_health()

        self.client.session.get.side_effect = requests.exceptions.ConnectionError('down')
        assert not self.client.check_health()

    def test_requires_base_url(self):
        with pytest.raises(ValueError):
            LedgerClient(LedgerConfig())


class TestStubLedgerClient:

    def test_creates_once(self):
        stub = StubLedgerClient()

        first = stub.create_receipt(PAYLOAD)
        second = stub.create_receipt(PAYLOAD)

        assert first.created
        assert second.already_exists
        assert len(stub.records) == 1
        assert stub.get_recent_receipt_no() == 'ANN/S/5'
