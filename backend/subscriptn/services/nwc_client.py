"""
Lightning payment client used by the payment processor.

Two outbound calls per payment:
  1. LNURL-pay against the recipient's lightning address to get a BOLT11 invoice.
  2. The NWC wallet service (PAYMENT_BACKEND_URL) to pay that invoice with the
     shop owner's wallet connection.

Both go through one httpx.Client with an explicit timeout.
"""
import logging
import re
from dataclasses import dataclass
from typing import Optional
from urllib.parse import parse_qs, urlparse

import httpx

from subscriptn.config import get_settings
from subscriptn.schemas.server import LIGHTNING_ADDRESS_PATTERN

logger = logging.getLogger(__name__)

_LIGHTNING_ADDRESS_RE = re.compile(LIGHTNING_ADDRESS_PATTERN)

# Failure codes surfaced on PaymentResult.code
WALLET_NOT_CONNECTED = "wallet_not_connected"
INSUFFICIENT_BALANCE = "insufficient_balance"
INVALID_RECIPIENT = "invalid_recipient"
NETWORK_ERROR = "network_error"
PAYMENT_FAILED = "payment_failed"

# NIP-47 error codes returned by the wallet service
_WALLET_ERROR_CODES = {
    "INSUFFICIENT_BALANCE": INSUFFICIENT_BALANCE,
    "UNAUTHORIZED": WALLET_NOT_CONNECTED,
    "RESTRICTED": WALLET_NOT_CONNECTED,
    "QUOTA_EXCEEDED": INSUFFICIENT_BALANCE,
}


class WalletPaymentError(Exception):
    """A payment step failed. code is one of the failure codes above."""

    def __init__(self, code: str, message: str):
        super().__init__(message)
        self.code = code
        self.message = message


@dataclass
class NWCConnection:
    wallet_pubkey: str
    relay: str
    secret: str


def parse_connection_string(connection_string: str) -> NWCConnection:
    """Split a nostr+walletconnect:// URI into its parts."""
    parsed = urlparse(connection_string.strip())
    if parsed.scheme != "nostr+walletconnect" or not parsed.netloc:
        raise WalletPaymentError(WALLET_NOT_CONNECTED, "Invalid NWC connection string")

    query = parse_qs(parsed.query)
    relay = query.get("relay", [None])[0]
    secret = query.get("secret", [None])[0]
    if not relay or not secret:
        raise WalletPaymentError(WALLET_NOT_CONNECTED, "NWC connection string is missing relay or secret")

    return NWCConnection(wallet_pubkey=parsed.netloc, relay=relay, secret=secret)


def _optional_int(value) -> Optional[int]:
    if value is None:
        return None
    return int(value)


class LightningPaymentClient:
    """Fetches invoices over LNURL-pay and pays them through the NWC wallet service."""

    def __init__(self, transport: Optional[httpx.BaseTransport] = None):
        settings = get_settings()
        self.backend_url = (settings.payment_backend_url or "").rstrip("/")
        self.api_key = settings.payment_backend_api_key
        self.client = httpx.Client(
            timeout=settings.payment_timeout_seconds,
            transport=transport,
            headers={"Accept": "application/json"},
        )

    def close(self) -> None:
        self.client.close()

    def _get_json(self, url: str, params: Optional[dict] = None) -> dict:
        try:
            response = self.client.get(url, params=params)
        except (httpx.InvalidURL, httpx.UnsupportedProtocol):
            raise WalletPaymentError(INVALID_RECIPIENT, f"Invalid LNURL URL: {url!r}")
        except httpx.TransportError as e:
            raise WalletPaymentError(NETWORK_ERROR, f"Could not reach {url}: {type(e).__name__}")

        if response.status_code != 200:
            raise WalletPaymentError(INVALID_RECIPIENT, f"LNURL endpoint returned {response.status_code}")
        try:
            data = response.json()
        except ValueError:
            raise WalletPaymentError(INVALID_RECIPIENT, "LNURL endpoint returned invalid JSON")
        if not isinstance(data, dict):
            raise WalletPaymentError(INVALID_RECIPIENT, "LNURL endpoint returned unexpected payload")
        if str(data.get("status", "")).upper() == "ERROR":
            raise WalletPaymentError(INVALID_RECIPIENT, data.get("reason") or "LNURL endpoint returned an error")
        return data

    def fetch_invoice(self, lightning_address: str, amount_sats: int, comment: Optional[str] = None) -> str:
        """Resolve a lightning address to a BOLT11 invoice for amount_sats."""
        if not lightning_address or not _LIGHTNING_ADDRESS_RE.match(lightning_address):
            raise WalletPaymentError(INVALID_RECIPIENT, "Invalid lightning address")

        username, domain = lightning_address.split("@", 1)
        pay_request = self._get_json(f"https://{domain}/.well-known/lnurlp/{username}")

        callback = pay_request.get("callback")
        if not callback or not isinstance(callback, str):
            raise WalletPaymentError(INVALID_RECIPIENT, "Invalid LNURL response: missing callback")

        amount_msat = amount_sats * 1000
        try:
            min_sendable = _optional_int(pay_request.get("minSendable"))
            max_sendable = _optional_int(pay_request.get("maxSendable"))
            comment_allowed = _optional_int(pay_request.get("commentAllowed")) or 0
        except (TypeError, ValueError):
            raise WalletPaymentError(INVALID_RECIPIENT, "Invalid LNURL response: malformed sendable range")

        if (min_sendable is not None and amount_msat < min_sendable) or (
            max_sendable is not None and amount_msat > max_sendable
        ):
            raise WalletPaymentError(INVALID_RECIPIENT, f"{amount_sats} sats is outside the recipient's sendable range")

        params = {"amount": amount_msat}
        if comment and comment_allowed > 0:
            params["comment"] = comment[:comment_allowed]

        invoice_data = self._get_json(callback, params=params)
        invoice = invoice_data.get("pr")
        if not invoice:
            raise WalletPaymentError(INVALID_RECIPIENT, "Invalid invoice response: missing payment request")
        return invoice

    def pay_invoice(self, connection_string: str, invoice: str) -> str:
        """Pay a BOLT11 invoice with the given wallet connection. Returns the preimage."""
        parse_connection_string(connection_string)

        if not self.backend_url:
            raise WalletPaymentError(WALLET_NOT_CONNECTED, "Payment backend is not configured")

        headers = {}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        try:
            response = self.client.post(
                f"{self.backend_url}/nwc/pay_invoice",
                json={"connection": connection_string, "invoice": invoice},
                headers=headers,
            )
        except httpx.TransportError as e:
            raise WalletPaymentError(NETWORK_ERROR, f"Wallet service unreachable: {type(e).__name__}")

        try:
            data = response.json()
        except ValueError:
            data = {}

        if response.status_code == 200 and isinstance(data, dict) and data.get("preimage"):
            return data["preimage"]

        error = data.get("error") if isinstance(data, dict) else None
        if isinstance(error, dict):
            code = _WALLET_ERROR_CODES.get(str(error.get("code", "")).upper(), PAYMENT_FAILED)
            raise WalletPaymentError(code, error.get("message") or "Wallet rejected the payment")

        if response.status_code in (401, 403):
            raise WalletPaymentError(WALLET_NOT_CONNECTED, "Wallet service rejected the connection")
        if response.status_code >= 500:
            raise WalletPaymentError(NETWORK_ERROR, f"Wallet service returned {response.status_code}")
        raise WalletPaymentError(PAYMENT_FAILED, f"Wallet service returned {response.status_code}")

    def send_payment(self, connection_string: str, lightning_address: str, amount_sats: int,
                     description: Optional[str] = None) -> str:
        invoice = self.fetch_invoice(lightning_address, amount_sats, comment=description)
        return self.pay_invoice(connection_string, invoice)
