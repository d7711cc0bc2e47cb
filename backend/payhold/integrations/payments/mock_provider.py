from __future__ import annotations

import hashlib
import threading

from payhold.integrations.payments.base import ChargeStatus, PaymentsProvider, TransferResult


class MockPaymentsProvider(PaymentsProvider):
    """Deterministic in-process processor.

    Repeating an idempotency key returns the original transfer, like the real
    processor does.
    """

    name = "mock"

    def __init__(self, *, refunded_charges: set[str] | None = None):
        self.refunded_charges = set(refunded_charges or ())
        self.transfers: dict[str, TransferResult] = {}
        self._lock = threading.Lock()

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
        with self._lock:
            existing = self.transfers.get(idempotency_key)
            if existing is not None:
                return existing
            digest = hashlib.sha256(idempotency_key.encode("utf-8")).hexdigest()[:16]
            result = TransferResult(
                reference=f"tr_mock_{digest}",
                amount_minor=int(amount_minor),
                currency=currency,
                destination=destination,
                provider=self.name,
                raw={"transfer_group": transfer_group, "metadata": metadata or {}},
            )
            self.transfers[idempotency_key] = result
            return result

    def get_charge(self, charge_reference: str) -> ChargeStatus:
        refunded = charge_reference in self.refunded_charges
        return ChargeStatus(
            reference=charge_reference,
            refunded=refunded,
            raw={"provider": self.name},
        )
