"""
Payout retries.

A failed transfer is recorded by the ledger with no balance change. Retrying
it issues one new transfer under ``<reference>_retry``; its outcome comes back
through the transfer webhooks like any other payout.

Each failed payout can be retried once. The retry is claimed with a
processed-event marker before the provider is called, so two operators (or two
CLI runs) can't both send money for the same failure. A retry the provider
rejects outright is recorded as a failed payout of its own and can be retried
in turn.
"""

import asyncio
import logging

from settlement_engine.contracts.records import Transaction
from settlement_engine.contracts.types import TransactionStatus, TransactionType
from settlement_engine.errors import SettlementError, StoreNotFound
from settlement_engine.ledger.service import SettlementLedger
from settlement_engine.persistence.base import SettlementRepository
from settlement_engine.providers.base import PaymentProvider, ProviderError, ProviderResult

logger = logging.getLogger(__name__)


def retry_reference(payout_reference: str) -> str:
    return f"{payout_reference}_retry"


def retry_claim_key(payout_reference: str) -> str:
    return f"payout_retry:{payout_reference}"


def _claim_retry(repo: SettlementRepository, payout: Transaction, reference: str) -> bool:
    key = retry_claim_key(payout.provider_reference)
    with repo.atomic(store_ids=[payout.store_id], idempotency_key=key) as uow:
        return uow.mark_processed(
            key,
            "payout_retry",
            payout.order_id,
            {
                "payout_reference": payout.provider_reference,
                "retry_reference": reference,
                "store_id": payout.store_id,
                "amount": str(payout.amount),
            },
        )


def _record_rejected_retry(repo: SettlementRepository, payout: Transaction, reference: str, reason: str) -> None:
    SettlementLedger(repo).apply_transfer_outcome(
        succeeded=False,
        payout_reference=reference,
        store_id=payout.store_id,
        amount=payout.amount,
        reason=reason,
        order_id=payout.order_id,
    )


async def retry_failed_payout(
    payout_reference: str,
    repo: SettlementRepository,
    provider: PaymentProvider,
) -> ProviderResult:
    """
    Re-issue a failed payout to the same store for the same amount.

    Raises:
        SettlementError: no failed payout with that reference, it already
            succeeded, or it was already retried
        StoreNotFound: the payout's store is gone
        ProviderError: the provider rejected the transfer
    """
    payouts = [
        t
        for t in repo.list_transactions(provider_reference=payout_reference)
        if t.type == TransactionType.PAYOUT
    ]
    failed = [t for t in payouts if t.status == TransactionStatus.FAILED]

    if not failed:
        raise SettlementError(f"No failed payout {payout_reference}", code="PAYOUT_NOT_FOUND")

    if any(t.status == TransactionStatus.COMPLETED for t in payouts):
        raise SettlementError(f"Payout {payout_reference} already completed", code="PAYOUT_COMPLETED")

    payout = failed[-1]
    store = repo.get_store(payout.store_id)
    if store is None:
        raise StoreNotFound(f"Store {payout.store_id} not found", details={"store_id": payout.store_id})

    if not store.recipient_code:
        raise SettlementError(
            f"Store {store.id} has no transfer recipient",
            code="MISSING_RECIPIENT",
            details={"store_id": store.id},
        )

    reference = retry_reference(payout_reference)
    if not await asyncio.to_thread(_claim_retry, repo, payout, reference):
        raise SettlementError(
            f"Payout {payout_reference} was already retried as {reference}",
            code="PAYOUT_RETRIED",
            details={"payout_reference": payout_reference, "retry_reference": reference},
        )

    try:
        result = await provider.initiate_transfer(
            amount=payout.amount,
            recipient_code=store.recipient_code,
            reference=reference,
            reason=f"Retry of payout {payout_reference}",
        )
    except ProviderError as e:
        if e.retryable:
            # The transfer may still have been queued; its webhook settles it.
            logger.error(
                f"Retry {reference} of payout {payout_reference} has an unknown outcome: {e}",
                extra={"store_id": store.id, "retry_reference": reference, "code": e.code},
            )
        else:
            await asyncio.to_thread(_record_rejected_retry, repo, payout, reference, str(e))
        raise

    if not result.success:
        await asyncio.to_thread(
            _record_rejected_retry, repo, payout, reference, result.error_message or "Transfer rejected"
        )

    logger.info(
        f"Retried payout {payout_reference} as {reference}",
        extra={
            "store_id": store.id,
            "payout_reference": payout_reference,
            "retry_reference": reference,
            "accepted": result.success,
        },
    )
    return result
