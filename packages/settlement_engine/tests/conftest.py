"""
Pytest fixtures for settlement tests.
"""

import json
from decimal import Decimal

import pytest

from settlement_engine.calculator import build_order
from settlement_engine.contracts.records import OrderLine, Store
from settlement_engine.contracts.types import SellerTier
from settlement_engine.ledger.service import SettlementLedger
from settlement_engine.persistence.memory import InMemorySettlementRepository
from settlement_engine.providers.paystack.webhook import compute_signature

WEBHOOK_SECRET = "sk_test_secret"


@pytest.fixture
def webhook_secret():
    """Secret used to sign test webhooks."""
    return WEBHOOK_SECRET


@pytest.fixture
def repo():
    """In-memory repository with two registered stores."""
    repo = InMemorySettlementRepository()
    repo.add_store(Store(id="store_a", seller_id="seller_a", tier=SellerTier.FREE, recipient_code="RCP_a"))
    repo.add_store(Store(id="store_b", seller_id="seller_b", tier=SellerTier.PREMIUM, recipient_code="RCP_b"))
    return repo


@pytest.fixture
def ledger(repo):
    """Ledger over the in-memory repository."""
    return SettlementLedger(repo)


@pytest.fixture
def order_lines():
    """Two sellers: free tier R100 x 2, premium tier R50 x 1."""
    return [
        OrderLine(
            product_id="prod_1",
            seller_id="seller_a",
            store_id="store_a",
            unit_price=Decimal("100.00"),
            quantity=2,
            tier=SellerTier.FREE,
        ),
        OrderLine(
            product_id="prod_2",
            seller_id="seller_b",
            store_id="store_b",
            unit_price=Decimal("50.00"),
            quantity=1,
            tier=SellerTier.PREMIUM,
        ),
    ]


@pytest.fixture
def order(repo, order_lines):
    """A pending order placed in the repository.

    subtotal 250.00, commission 14.00 + 2.00, service fee 15.00,
    shipping 85.00, grand total 366.00.
    """
    order = build_order(
        "order_1",
        "customer_1",
        order_lines,
        payment_reference="PAY_ORDER_1",
    )
    return repo.add_order(order)


def charge_payload(
    reference: str = "PAY_ORDER_1",
    amount: int = 36600,
    order_id: str | None = "order_1",
    event: str = "charge.success",
    **data,
) -> dict:
    """Paystack charge webhook body."""
    body = {
        "id": 302961,
        "reference": reference,
        "amount": amount,
        "status": "success" if event == "charge.success" else "failed",
        "gateway_response": "Successful" if event == "charge.success" else "Declined",
        "paid_at": "2026-01-11T10:00:00.000Z",
        "customer": {"email": "customer@example.com"},
        "metadata": {"order_id": order_id} if order_id else {},
    }
    body.update(data)
    return {"event": event, "data": body}


def transfer_payload(
    reference: str = "PAYOUT_1",
    amount: int = 10000,
    store_id: str | None = "store_a",
    event: str = "transfer.success",
    **data,
) -> dict:
    """Paystack transfer webhook body."""
    body = {
        "id": 77001,
        "reference": reference,
        "amount": amount,
        "transfer_code": "TRF_1",
        "recipient": {"recipient_code": "RCP_a", "metadata": {"store_id": store_id} if store_id else {}},
    }
    if event == "transfer.failed":
        body["failure_reason"] = "Account closed"
    body.update(data)
    return {"event": event, "data": body}


def signed(payload: dict, secret: str = WEBHOOK_SECRET) -> tuple[bytes, str]:
    """Raw body and its x-paystack-signature."""
    raw = json.dumps(payload).encode()
    return raw, compute_signature(raw, secret)


@pytest.fixture
def make_charge():
    """Factory for charge webhook bodies."""
    return charge_payload


@pytest.fixture
def make_transfer():
    """Factory for transfer webhook bodies."""
    return transfer_payload


@pytest.fixture
def sign():
    """Sign a webhook body with the test secret."""
    return signed
