"""
Payments Webhook Service

FastAPI app that receives payment provider webhooks (Paystack).

Responsibilities:
- Verify webhook signature against the raw body
- Apply the event to the settlement ledger
- Fan the resulting business event out to automation endpoints
- Manage automation subscriptions at runtime (admin token required)

The provider only sees a 500 when the ledger asks for redelivery; endpoint
delivery failures never change the webhook response.
"""

import hmac
import logging

from fastapi import Depends, FastAPI, Header, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from paycore.logging import setup_logging
from paycore.settings import Settings, get_settings

from settlement_engine.dispatch.dead_letters import DeadLetterQueue
from settlement_engine.dispatch.dispatcher import AutomationDispatcher
from settlement_engine.dispatch.subscriptions import (
    SubscriptionConfig,
    SubscriptionRegistry,
    preset_subscription,
)
from settlement_engine.dispatch.transport import HttpxDeliveryTransport
from settlement_engine.handlers.router import EventRouter
from settlement_engine.ledger.service import SettlementLedger
from settlement_engine.persistence.base import SettlementRepository
from settlement_engine.providers.factory import get_provider
from settlement_engine.providers.paystack.webhook import SIGNATURE_HEADER
from settlement_engine.service.intake import WebhookIntake

setup_logging()
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Payments Webhook",
    description="Receives payment webhooks, settles orders and notifies automation platforms",
    version="1.0.0",
)


def build_repository(settings: Settings) -> SettlementRepository:
    """SQL repository, or an in-memory one when running against the stub provider."""
    if settings.PAYMENT_PROVIDER == "stub":
        from settlement_engine.persistence.memory import InMemorySettlementRepository
        logger.warning("Stub payment provider: settlement state is kept in memory")
        return InMemorySettlementRepository()

    from paycore.db import get_sessionmaker
    from settlement_engine.persistence.repo import SqlSettlementRepository
    return SqlSettlementRepository(get_sessionmaker())


def configure(
    intake: WebhookIntake,
    registry: SubscriptionRegistry,
    admin_token: str | None = None,
) -> None:
    """Install the services the routes use."""
    app.state.intake = intake
    app.state.registry = registry
    app.state.admin_token = admin_token


def configure_from_settings(settings: Settings) -> None:
    from paycore.redis import get_redis_client

    provider = get_provider(settings)
    ledger = SettlementLedger(build_repository(settings))

    registry = SubscriptionRegistry()
    loaded = registry.load(settings.AUTOMATION_SUBSCRIPTIONS)

    dispatcher = AutomationDispatcher(
        registry,
        HttpxDeliveryTransport(timeout=settings.DISPATCH_TIMEOUT_SECONDS),
        base_delay=settings.DISPATCH_BASE_DELAY_SECONDS,
        max_delay=settings.DISPATCH_MAX_DELAY_SECONDS,
        dead_letters=DeadLetterQueue(
            get_redis_client(),
            stream_name=settings.DLQ_STREAM,
            max_len=settings.DLQ_MAX_LEN,
        ),
    )

    intake = WebhookIntake(
        provider=provider,
        webhook_secret=settings.webhook_secret,
        router=EventRouter(ledger),
        dispatcher=dispatcher,
    )
    configure(intake, registry, settings.ADMIN_API_TOKEN)

    logger.info(
        f"Payments webhook service configured",
        extra={"provider": settings.PAYMENT_PROVIDER, "subscriptions": loaded},
    )


@app.on_event("startup")
async def startup():
    """Build services from settings unless they were installed already."""
    if getattr(app.state, "intake", None) is not None:
        return
    try:
        configure_from_settings(get_settings())
    except Exception as e:
        logger.error(f"Failed to initialize payments webhook service: {e}")
        raise


@app.on_event("shutdown")
async def shutdown():
    """Let background fan-outs finish, then release HTTP clients."""
    intake: WebhookIntake | None = getattr(app.state, "intake", None)
    if intake is None:
        return

    await intake.drain()
    if intake.dispatcher is not None:
        await intake.dispatcher.transport.close()
    await intake.provider.close()


def get_intake(request: Request) -> WebhookIntake:
    intake = getattr(request.app.state, "intake", None)
    if intake is None:
        raise HTTPException(status_code=503, detail="Service not ready")
    return intake


def get_registry(request: Request) -> SubscriptionRegistry:
    registry = getattr(request.app.state, "registry", None)
    if registry is None:
        raise HTTPException(status_code=503, detail="Service not ready")
    return registry


def require_admin(request: Request, x_admin_token: str | None = Header(None)) -> None:
    """
    Guard for subscription management.

    404 when no admin token is configured (endpoints disabled),
    403 when the token is missing or wrong.
    """
    expected = getattr(request.app.state, "admin_token", None)
    if not expected:
        raise HTTPException(status_code=404, detail="Not found")
    if not x_admin_token or not hmac.compare_digest(x_admin_token, expected):
        logger.warning("Rejected subscription admin request")
        raise HTTPException(status_code=403, detail="Invalid admin token")


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {"status": "healthy", "service": "payments-webhook"}


@app.post("/webhook/paystack")
async def receive_paystack_webhook(
    request: Request,
    intake: WebhookIntake = Depends(get_intake),
):
    """
    Receive a Paystack webhook.

    Flow:
    1. Verify x-paystack-signature over the raw body
    2. Parse and apply to the ledger
    3. Schedule automation fan-out
    4. Respond (fan-out keeps running in the background)
    """
    # Signature covers the exact bytes, so read before any parsing
    body = await request.body()
    signature = request.headers.get(SIGNATURE_HEADER)

    response = await intake.handle_webhook(body, signature, wait_for_dispatch=False)
    return JSONResponse(status_code=response.status_code, content=response.body)


class PresetSubscriptionRequest(BaseModel):
    """Subscription built from a platform preset."""

    preset: str
    url: str
    name: str | None = None
    headers: dict[str, str] = Field(default_factory=dict)


@app.get("/subscriptions", dependencies=[Depends(require_admin)])
async def list_subscriptions(registry: SubscriptionRegistry = Depends(get_registry)):
    """List automation subscriptions."""
    return {"subscriptions": [s.to_dict() for s in registry.snapshot()]}


@app.post("/subscriptions", status_code=201, dependencies=[Depends(require_admin)])
async def add_subscription(
    payload: SubscriptionConfig | PresetSubscriptionRequest,
    registry: SubscriptionRegistry = Depends(get_registry),
):
    """
    Add (or replace) a subscription.

    Accepts either a full definition (url, events, headers, max_retries, name)
    or a preset (preset, url, optional name and headers).
    """
    if isinstance(payload, PresetSubscriptionRequest):
        overrides = {"headers": payload.headers} if payload.headers else {}
        if payload.name:
            overrides["name"] = payload.name
        try:
            subscription = preset_subscription(payload.preset, payload.url, **overrides)
        except ValueError as e:
            raise HTTPException(status_code=422, detail=str(e))
    else:
        subscription = payload.to_subscription()

    registry.add_subscription(subscription)
    return subscription.to_dict()


@app.delete("/subscriptions", dependencies=[Depends(require_admin)])
async def remove_subscription(
    url: str,
    registry: SubscriptionRegistry = Depends(get_registry),
):
    """Remove a subscription by URL."""
    if not registry.remove_subscription(url):
        raise HTTPException(status_code=404, detail="Subscription not found")
    return {"status": "removed", "url": url}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
