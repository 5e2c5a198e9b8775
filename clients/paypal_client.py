"""
PayPal Orders v2 client.

Two-phase checkout: create an order, the payer approves it in PayPal's UI,
then capture it. Capture answers with one of three outcomes:

- Captured:    funds moved; carries the capture (transaction) id and amount
- Recoverable: the payer's instrument was declined; the same order can be
               approved again (the buyer-side SDK's actions.restart())
- Failed:      anything else, including transport errors and responses
               that don't have the expected shape

OAuth client-credentials tokens are fetched on demand and cached until
shortly before they expire.
"""

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any

import requests

logger = logging.getLogger(__name__)

# Issues after which the payer can retry the same order with another instrument
RECOVERABLE_ISSUES = frozenset({"INSTRUMENT_DECLINED"})

ORDER_ALREADY_CAPTURED = "ORDER_ALREADY_CAPTURED"

_TOKEN_REFRESH_MARGIN_SECONDS = 60


class PayPalError(Exception):
    """Raised when a PayPal request fails outside of capture."""

    def __init__(self, message: str, debug_id: str | None = None, issue: str | None = None):
        self.debug_id = debug_id
        self.issue = issue
        super().__init__(message)


@dataclass(frozen=True)
class GatewayOrder:
    """An order created at the gateway, waiting for payer approval."""
    order_id: str
    status: str
    approve_url: str | None = None


@dataclass(frozen=True)
class Captured:
    """Funds captured."""
    order_id: str
    transaction_id: str
    amount: str
    currency: str
    reference_id: str | None = None
    raw: dict = field(default_factory=dict, repr=False, compare=False)


@dataclass(frozen=True)
class Recoverable:
    """Instrument declined; approval can be restarted for the same order."""
    order_id: str
    issue: str
    debug_id: str | None = None


@dataclass(frozen=True)
class Failed:
    """Non-recoverable capture failure."""
    order_id: str
    issue: str
    message: str
    debug_id: str | None = None


CaptureResult = Captured | Recoverable | Failed


def _first_issue(body: dict) -> str | None:
    details = body.get("details") or []
    if details and isinstance(details[0], dict):
        return details[0].get("issue")
    return body.get("name")


def parse_capture(order_id: str, body: dict) -> CaptureResult:
    """
    Turn a completed-order body into a CaptureResult.

    Expects purchase_units[0].payments.captures[0] with id, status and amount.
    """
    try:
        capture = body["purchase_units"][0]["payments"]["captures"][0]
        transaction_id = capture["id"]
        amount = capture.get("amount") or body["purchase_units"][0]["amount"]
        value = amount["value"]
        currency = amount.get("currency_code", "USD")
        status = capture.get("status", body.get("status"))
        reference_id = body["purchase_units"][0].get("reference_id")
    except (KeyError, IndexError, TypeError):
        logger.error(f"PayPal order {order_id}: capture missing from response")
        return Failed(
            order_id=order_id,
            issue="MALFORMED_RESPONSE",
            message="Capture details missing from gateway response",
        )

    if status != "COMPLETED":
        logger.error(f"PayPal order {order_id}: capture {transaction_id} is {status}")
        return Failed(
            order_id=order_id,
            issue=f"CAPTURE_{status}",
            message=f"Capture {transaction_id} is {status}",
        )

    return Captured(
        order_id=body.get("id", order_id),
        transaction_id=transaction_id,
        amount=value,
        currency=currency,
        reference_id=reference_id,
        raw=body,
    )


class PayPalClient:
    """REST client for PayPal Checkout Orders v2."""

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        base_url: str = "https://api-m.sandbox.paypal.com",
        timeout: int = 15,
    ):
        """
        Initialize with API credentials.

        Raises:
            ValueError: If any credential is empty
        """
        if not client_id:
            raise ValueError("client_id is required")
        if not client_secret:
            raise ValueError("client_secret is required")
        if not base_url:
            raise ValueError("base_url is required")

        self.client_id = client_id
        self.client_secret = client_secret
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

        self._session = requests.Session()
        self._token: str | None = None
        self._token_expires_at = 0.0
        self._token_lock = threading.Lock()

    # -------------------------------------------------------------------------
    # Transport
    # -------------------------------------------------------------------------

    def _access_token(self) -> str:
        """Client-credentials token, refreshed shortly before expiry."""
        with self._token_lock:
            if self._token and time.monotonic() < self._token_expires_at:
                return self._token

            try:
                response = self._session.post(
                    f"{self.base_url}/v1/oauth2/token",
                    auth=(self.client_id, self.client_secret),
                    data={"grant_type": "client_credentials"},
                    headers={"Accept": "application/json"},
                    timeout=self.timeout,
                )
            except requests.exceptions.RequestException as e:
                logger.error(f"PayPal auth connection failed: {e}")
                raise PayPalError(f"Connection failed: {e}", issue="NETWORK_ERROR")

            if response.status_code != 200:
                debug_id = response.headers.get("PayPal-Debug-Id")
                logger.error(f"PayPal auth failed: HTTP {response.status_code} (debug_id={debug_id})")
                raise PayPalError(
                    f"Authentication failed: HTTP {response.status_code}",
                    debug_id=debug_id,
                    issue="AUTHENTICATION_FAILURE",
                )

            body = self._json(response)
            if not body.get("access_token"):
                debug_id = response.headers.get("PayPal-Debug-Id")
                logger.error(f"PayPal auth response carried no access_token (debug_id={debug_id})")
                raise PayPalError(
                    "Authentication response missing access_token",
                    debug_id=debug_id,
                    issue="MALFORMED_RESPONSE",
                )
            self._token = body["access_token"]
            try:
                expires_in = int(body.get("expires_in", 300))
            except (TypeError, ValueError):
                expires_in = 300
            self._token_expires_at = time.monotonic() + max(
                expires_in - _TOKEN_REFRESH_MARGIN_SECONDS, 0
            )
            return self._token

    def _request(self, method: str, path: str, payload: dict | None = None) -> requests.Response:
        """Authenticated request. Transport errors become PayPalError."""
        headers = {
            "Authorization": f"Bearer {self._access_token()}",
            "Content-Type": "application/json",
            "Prefer": "return=representation",
        }

        try:
            return self._session.request(
                method,
                f"{self.base_url}{path}",
                json=payload,
                headers=headers,
                timeout=self.timeout,
            )
        except requests.exceptions.RequestException as e:
            logger.error(f"PayPal {method} {path} connection failed: {e}")
            raise PayPalError(f"Connection failed: {e}", issue="NETWORK_ERROR")

    @staticmethod
    def _json(response: requests.Response) -> dict[str, Any]:
        try:
            body = response.json()
        except ValueError:
            logger.error(f"PayPal returned invalid JSON: {response.text[:200]}")
            raise PayPalError(
                "Invalid response from gateway",
                debug_id=response.headers.get("PayPal-Debug-Id"),
                issue="MALFORMED_RESPONSE",
            )
        if not isinstance(body, dict):
            raise PayPalError(
                "Invalid response from gateway",
                debug_id=response.headers.get("PayPal-Debug-Id"),
                issue="MALFORMED_RESPONSE",
            )
        return body

    # -------------------------------------------------------------------------
    # Orders
    # -------------------------------------------------------------------------

    def create_order(
        self,
        reference_id: str,
        amount: str,
        description: str,
        currency: str = "USD",
        brand_name: str | None = None,
    ) -> GatewayOrder:
        """
        Create a CAPTURE-intent order.

        Args:
            reference_id: Our invoice id
            amount: Decimal string with exactly 2 places ("430.92")
            description: Shown to the payer
            currency: ISO currency code
            brand_name: Shown on the approval page

        Raises:
            PayPalError: On any failure
        """
        payload: dict[str, Any] = {
            "intent": "CAPTURE",
            "purchase_units": [
                {
                    "reference_id": reference_id,
                    "description": description[:127],
                    "amount": {"currency_code": currency, "value": amount},
                }
            ],
        }
        if brand_name:
            payload["application_context"] = {
                "brand_name": brand_name,
                "landing_page": "BILLING",
                "user_action": "PAY_NOW",
            }

        response = self._request("POST", "/v2/checkout/orders", payload)
        body = self._json(response)

        if response.status_code not in (200, 201):
            debug_id = body.get("debug_id")
            logger.error(f"PayPal order creation failed: {body.get('message')} (debug_id={debug_id})")
            raise PayPalError(
                f"Order creation failed: {body.get('message', response.status_code)}",
                debug_id=debug_id,
                issue=_first_issue(body),
            )

        if "id" not in body:
            raise PayPalError("Order id missing from gateway response", issue="MALFORMED_RESPONSE")

        approve_url = next(
            (link["href"] for link in body.get("links", []) if link.get("rel") in ("approve", "payer-action")),
            None,
        )

        logger.info(f"PayPal order {body['id']} created for {reference_id} ({amount} {currency})")
        return GatewayOrder(order_id=body["id"], status=body.get("status", ""), approve_url=approve_url)

    def capture_order(self, order_id: str) -> CaptureResult:
        """
        Capture an approved order.

        Never raises for gateway-side problems; they come back as Failed.
        """
        try:
            response = self._request("POST", f"/v2/checkout/orders/{order_id}/capture", {})
            body = self._json(response)
        except PayPalError as e:
            return Failed(order_id=order_id, issue=e.issue or "GATEWAY_ERROR", message=str(e), debug_id=e.debug_id)

        if response.status_code in (200, 201):
            return parse_capture(order_id, body)

        issue = _first_issue(body) or f"HTTP_{response.status_code}"
        debug_id = body.get("debug_id") or response.headers.get("PayPal-Debug-Id")

        if issue in RECOVERABLE_ISSUES:
            logger.info(f"PayPal order {order_id}: {issue}, payer can retry (debug_id={debug_id})")
            return Recoverable(order_id=order_id, issue=issue, debug_id=debug_id)

        logger.error(f"PayPal capture failed for {order_id}: {issue} (debug_id={debug_id})")
        return Failed(
            order_id=order_id,
            issue=issue,
            message=body.get("message", "Capture failed"),
            debug_id=debug_id,
        )

    def get_order(self, order_id: str) -> dict[str, Any]:
        """
        Fetch an order's current state.

        Raises:
            PayPalError: On any failure
        """
        response = self._request("GET", f"/v2/checkout/orders/{order_id}")
        body = self._json(response)

        if response.status_code != 200:
            raise PayPalError(
                f"Get order failed: {body.get('message', response.status_code)}",
                debug_id=body.get("debug_id"),
                issue=_first_issue(body),
            )

        return body
