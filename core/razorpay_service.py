# Razorpay Payment Service for India
import hmac
import hashlib
import requests
from typing import Optional, Dict, Any
import logging

from config import app_config

logger = logging.getLogger(__name__)


class RazorpayConfig:
    """Razorpay configuration for India"""
    BASE_URL = app_config.RAZORPAY_BASE_URL
    KEY_ID = app_config.RAZORPAY_KEY_ID
    KEY_SECRET = app_config.RAZORPAY_KEY_SECRET
    CURRENCY = "INR"  # Indian Rupees
    TIMEOUT_SECONDS = app_config.PAYMENT_GATEWAY_TIMEOUT_SECONDS
    RECEIPT_MAX_LENGTH = 40


class PaymentGatewayError(Exception):
    """The gateway could not be reached or refused the request."""


class RazorpayService:
    """Service for creating Razorpay orders and verifying checkout signatures"""

    def __init__(
        self,
        key_id: Optional[str] = None,
        key_secret: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
    ):
        self.base_url = base_url or RazorpayConfig.BASE_URL
        self.key_id = key_id if key_id is not None else RazorpayConfig.KEY_ID
        self.key_secret = key_secret if key_secret is not None else RazorpayConfig.KEY_SECRET
        self.timeout = timeout or RazorpayConfig.TIMEOUT_SECONDS
        self.headers = {
            "Content-Type": "application/json"
        }

    def _make_request(self, method: str, endpoint: str, data: Optional[Dict] = None) -> Dict[str, Any]:
        """Make a request to Razorpay API"""
        url = f"{self.base_url}{endpoint}"
        auth = (self.key_id, self.key_secret)
        try:
            if method == "GET":
                response = requests.get(url, headers=self.headers, auth=auth, timeout=self.timeout)
            elif method == "POST":
                response = requests.post(url, headers=self.headers, auth=auth, json=data, timeout=self.timeout)
            else:
                raise ValueError(f"Unsupported method: {method}")

            response.raise_for_status()
            return response.json()
        except requests.exceptions.RequestException as e:
            logger.error(f"Razorpay API error: {e}")
            raise PaymentGatewayError(f"Payment service error: {str(e)}") from e

    @staticmethod
    def build_receipt(conversation_id: str, epoch_ms: int) -> str:
        """Receipt of the form conv_<id>_<epoch_ms>, cut to the gateway limit."""
        return f"conv_{conversation_id}_{epoch_ms}"[:RazorpayConfig.RECEIPT_MAX_LENGTH]

    def create_order(
        self,
        amount_paise: int,
        currency: str,
        receipt: str,
        notes: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        """
        Create a Razorpay order

        Args:
            amount_paise: Amount in paise
            currency: ISO currency code, INR
            receipt: Merchant receipt, at most 40 characters
            notes: Key/value notes stored on the order

        Returns:
            {order_id, amount_paise, currency, receipt}
        """
        data = {
            "amount": amount_paise,
            "currency": currency,
            "receipt": receipt[:RazorpayConfig.RECEIPT_MAX_LENGTH],
            "notes": notes or {},
        }
        order = self._make_request("POST", "/orders", data)
        if not order.get("id"):
            raise PaymentGatewayError("Payment service returned an order without an id")
        return {
            "order_id": order["id"],
            "amount_paise": order.get("amount", amount_paise),
            "currency": order.get("currency", currency),
            "receipt": order.get("receipt", data["receipt"]),
        }

    def fetch_order(self, order_id: str) -> Dict[str, Any]:
        return self._make_request("GET", f"/orders/{order_id}")

    def compute_signature(self, order_id: str, payment_id: str) -> str:
        """HMAC-SHA256 hex digest of "order_id|payment_id" keyed with the key secret"""
        return hmac.new(
            self.key_secret.encode('utf-8'),
            f"{order_id}|{payment_id}".encode('utf-8'),
            hashlib.sha256
        ).hexdigest()

    def verify_signature(self, order_id: str, payment_id: str, signature: str) -> bool:
        """
        Verify a checkout signature

        Returns:
            True if signature is valid
        """
        if not (order_id and payment_id and signature) or not self.key_secret:
            return False
        return hmac.compare_digest(self.compute_signature(order_id, payment_id), signature)
