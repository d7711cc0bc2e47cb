from __future__ import annotations

from dataclasses import dataclass


@dataclass
class TransferResult:
    reference: str
    amount_minor: int
    currency: str
    destination: str
    provider: str
    raw: dict | None = None


@dataclass
class ChargeStatus:
    reference: str
    refunded: bool
    amount_refunded_minor: int = 0
    raw: dict | None = None


class PaymentsProvider:
    name = "unknown"

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
        raise NotImplementedError

    def get_charge(self, charge_reference: str) -> ChargeStatus:
        raise NotImplementedError
