# services/payment_gateway.py
"""
bKash tokenized checkout client
"""

import logging
import threading
import time
from typing import Any, Dict, Optional

import requests
from flask import current_app

from core.errors import PaymentGatewayError

logger = logging.getLogger(__name__)

SUCCESS_CODE = '0000'


class BkashClient:
    """
    Thin wrapper over the tokenized checkout endpoints.

    The grant token is cached until shortly before it expires.
    """

    def __init__(self, base_url: str, app_key: str, app_secret: str, username: str,
                 password: str, callback_url: str, timeout: int = 30,
                 session: Optional[requests.Session] = None):
        self.base_url = base_url.rstrip('/')
        self.app_key = app_key
        self.app_secret = app_secret
        self.username = username
        self.password = password
        self.callback_url = callback_url
        self.timeout = timeout
        self.session = session or requests.Session()
        self._token = None
        self._token_expires_at = 0.0
        self._lock = threading.Lock()

    @classmethod
    def from_config(cls, config) -> 'BkashClient':
        return cls(
            base_url=config['BKASH_BASE_URL'],
            app_key=config['BKASH_APP_KEY'],
            app_secret=config['BKASH_APP_SECRET'],
            username=config['BKASH_USERNAME'],
            password=config['BKASH_PASSWORD'],
            callback_url=config['BKASH_CALLBACK_URL'],
            timeout=config.get('BKASH_TIMEOUT', 30),
        )

    def _post(self, path: str, payload: Dict[str, Any], headers: Dict[str, str]) -> Dict[str, Any]:
        url = f'{self.base_url}{path}'
        try:
            response = self.session.post(url, json=payload, headers={
                'Content-Type': 'application/json',
                'Accept': 'application/json',
                **headers,
            }, timeout=self.timeout)
            response.raise_for_status()
            data = response.json()
        except requests.RequestException as e:
            logger.error(f"bKash request to {path} failed: {str(e)}")
            raise PaymentGatewayError('Payment gateway is unavailable')
        except ValueError:
            logger.error(f"bKash returned a non-JSON response for {path}")
            raise PaymentGatewayError('Invalid response from payment gateway')

        status_code = data.get('statusCode')
        if status_code is not None and status_code != SUCCESS_CODE:
            message = data.get('statusMessage') or data.get('errorMessage') or 'Payment gateway error'
            logger.warning(f"bKash {path} returned {status_code}: {message}")
            raise PaymentGatewayError(message, details={'gatewayCode': status_code})
        if data.get('errorCode'):
            raise PaymentGatewayError(data.get('errorMessage') or 'Payment gateway error',
                                      details={'gatewayCode': data['errorCode']})
        return data

    def grant_token(self) -> str:
        with self._lock:
            if self._token and time.time() < self._token_expires_at:
                return self._token

            data = self._post('/tokenized/checkout/token/grant', {
                'app_key': self.app_key,
                'app_secret': self.app_secret,
            }, {'username': self.username, 'password': self.password})

            token = data.get('id_token')
            if not token:
                raise PaymentGatewayError('Payment gateway did not return a token')
            self._token = token
            # Renew a minute early
            self._token_expires_at = time.time() + max(int(data.get('expires_in', 3600)) - 60, 0)
            return token

    def _auth_headers(self) -> Dict[str, str]:
        return {'Authorization': self.grant_token(), 'X-APP-Key': self.app_key}

    def create_payment(self, amount, invoice_number: str, payer_reference: str) -> Dict[str, Any]:
        """Start a checkout; the response carries ``paymentID`` and ``bkashURL``"""
        return self._post('/tokenized/checkout/create', {
            'mode': '0011',
            'payerReference': payer_reference,
            'callbackURL': self.callback_url,
            'amount': f'{amount:.2f}',
            'currency': 'BDT',
            'intent': 'sale',
            'merchantInvoiceNumber': invoice_number,
        }, self._auth_headers())

    def execute_payment(self, payment_id: str) -> Dict[str, Any]:
        return self._post('/tokenized/checkout/execute', {'paymentID': payment_id}, self._auth_headers())

    def query_payment(self, payment_id: str) -> Dict[str, Any]:
        return self._post('/tokenized/checkout/payment/status', {'paymentID': payment_id},
                          self._auth_headers())


def get_payment_client() -> BkashClient:
    """Client bound to the current application"""
    client = current_app.extensions.get('bkash')
    if client is None:
        client = BkashClient.from_config(current_app.config)
        current_app.extensions['bkash'] = client
    return client
