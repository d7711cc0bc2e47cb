from __future__ import annotations

import requests

from payhold.integrations.common import ProviderCallError, env_timeout
from payhold.integrations.payments.base import ChargeStatus, PaymentsProvider, TransferResult


STRIPE_BASE = "https://api.stripe.com/v1"


def _error_message(response) -> str:
    try:
        body = response.json() if response.content else {}
    except ValueError:
        body = {}
    err = body.get("error") if isinstance(body, dict) else None
    if isinstance(err, dict):
        return str(err.get("message") or err.get("code") or "").strip() or f"HTTP {response.status_code}"
    return f"HTTP {response.status_code}"


def _json_body(response, code: str) -> dict:
    try:
        body = response.json() if response.content else {}
    except ValueError as e:
        raise ProviderCallError(code, "response was not JSON", status=response.status_code) from e
    if not isinstance(body, dict):
        raise ProviderCallError(code, "unexpected response shape", status=response.status_code)
    return body


class StripePaymentsProvider(PaymentsProvider):
    """Connect transfers and charge lookups over the Stripe REST API."""

    name = "stripe"

    def __init__(self, secret_key: str, *, timeout: float | None = None):
        self.secret_key = secret_key
        self.timeout = timeout if timeout is not None else env_timeout("PAYMENTS_HTTP_TIMEOUT_SECONDS", 25)

    def _headers(self, idempotency_key: str = "") -> dict:
        headers = {"Authorization": f"Bearer {self.secret_key}"}
        if idempotency_key:
            headers["Idempotency-Key"] = idempotency_key[:255]
        return headers

    def create_transfer(
        self,
        *,
        destination: str,
        amount_minor: int,
        currency: str,
        idempotency_key: str,
        transfer_group: str = "",
        metadata: dict | None = None,
    ) -> TransferResult:
        data = {
            "amount": int(amount_minor),
            "currency": (currency or "gbp").lower(),
            "destination": destination,
        }
        if transfer_group:
            data["transfer_group"] = transfer_group
        for key, value in (metadata or {}).items():
            data[f"metadata[{key}]"] = str(value)
        try:
            r = requests.post(
                f"{STRIPE_BASE}/transfers",
                headers=self._headers(idempotency_key),
                data=data,
                timeout=self.timeout,
            )
        except requests.Timeout as e:
            raise ProviderCallError("STRIPE_TIMEOUT", "transfer request timed out") from e
        except requests.RequestException as e:
            raise ProviderCallError("STRIPE_UNREACHABLE", str(e)[:200]) from e
        if r.status_code < 200 or r.status_code >= 300:
            raise ProviderCallError("STRIPE_TRANSFER_FAILED", _error_message(r), status=r.status_code)
        body = _json_body(r, "STRIPE_TRANSFER_FAILED")
        reference = str(body.get("id") or "").strip()
        if not reference:
            raise ProviderCallError("STRIPE_TRANSFER_FAILED", "response missing transfer id", status=r.status_code)
        return TransferResult(
            reference=reference,
            amount_minor=int(body.get("amount") or amount_minor),
            currency=str(body.get("currency") or currency),
            destination=str(body.get("destination") or destination),
            provider=self.name,
            raw=body,
        )

    def get_charge(self, charge_reference: str) -> ChargeStatus:
        ref = (charge_reference or "").strip()
        try:
            r = requests.get(f"{STRIPE_BASE}/charges/{ref}", headers=self._headers(), timeout=self.timeout)
        except requests.Timeout as e:
            raise ProviderCallError("STRIPE_TIMEOUT", "charge lookup timed out") from e
        except requests.RequestException as e:
            raise ProviderCallError("STRIPE_UNREACHABLE", str(e)[:200]) from e
        if r.status_code < 200 or r.status_code >= 300:
            raise ProviderCallError("STRIPE_CHARGE_LOOKUP_FAILED", _error_message(r), status=r.status_code)
        body = _json_body(r, "STRIPE_CHARGE_LOOKUP_FAILED")
        amount_refunded = int(body.get("amount_refunded") or 0)
        return ChargeStatus(
            reference=ref,
            refunded=bool(body.get("refunded")) or amount_refunded > 0,
            amount_refunded_minor=amount_refunded,
            raw=body,
        )
