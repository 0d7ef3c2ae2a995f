"""
Payment API endpoints.

Both confirmation paths end in the same IPaymentApplier.apply call:
- POST /webhook: Stripe push notification (signature-verified, no bearer auth)
- GET /verify: client poll after returning from checkout
"""

import logging

from fastapi import APIRouter, Depends, Query, Request

from api.middleware.auth import get_current_user
from api.dependencies import get_account_ledger, get_payment_applier
from api.models.errors import ErrorResponse
from shared.config import Settings, get_settings
from shared.models import AuthenticatedUser
from modules.ledger.interfaces import IAccountLedger

from .interfaces import IPaymentApplier
from .models import PaymentSource, VerifyPaymentResponse, WebhookResponse
from .exceptions import PaymentAccountMismatchError
from .stripe_events import (
    CHECKOUT_COMPLETED,
    checkout_session_to_event,
    construct_webhook_event,
    retrieve_paid_session,
)

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post(
    "/webhook",
    response_model=WebhookResponse,
    responses={400: {"model": ErrorResponse, "description": "Signature or payload rejected"}},
)
async def stripe_webhook(
    request: Request,
    settings: Settings = Depends(get_settings),
    applier: IPaymentApplier = Depends(get_payment_applier),
) -> WebhookResponse:
    """
    Receive Stripe webhook events.

    Only checkout.session.completed with a paid session credits an
    account. Redeliveries are acknowledged with already_applied=True.
    """
    payload = await request.body()
    event = construct_webhook_event(
        payload,
        request.headers.get("stripe-signature"),
        settings.stripe_webhook_secret,
        tolerance=settings.stripe_webhook_tolerance_seconds,
    ).to_dict()

    event_type = event.get("type", "")
    if event_type != CHECKOUT_COMPLETED:
        logger.warning(f"Ignoring Stripe event type {event_type}")
        return WebhookResponse(event_type=event_type, ignored=True)

    session = event["data"]["object"]
    if session.get("payment_status") != "paid":
        logger.warning(
            f"Ignoring checkout session {session.get('id')} with payment_status "
            f"{session.get('payment_status')}"
        )
        return WebhookResponse(event_type=event_type, ignored=True)

    application = await applier.apply(checkout_session_to_event(session, PaymentSource.WEBHOOK))
    return WebhookResponse(
        event_type=event_type,
        already_applied=application.already_applied,
        transaction_id=application.transaction.transaction_id,
    )


@router.get("/verify", response_model=VerifyPaymentResponse)
async def verify_payment(
    session_id: str = Query(..., min_length=1, description="Stripe checkout session ID"),
    user: AuthenticatedUser = Depends(get_current_user),
    settings: Settings = Depends(get_settings),
    applier: IPaymentApplier = Depends(get_payment_applier),
    ledger: IAccountLedger = Depends(get_account_ledger),
) -> VerifyPaymentResponse:
    """
    Check a checkout session and credit it if the webhook has not yet.

    Safe to call repeatedly and while the webhook is in flight.
    """
    session = retrieve_paid_session(session_id, settings.stripe_secret_key)
    event = checkout_session_to_event(session, PaymentSource.RECONCILIATION)
    if event.account_id != user.account_id:
        raise PaymentAccountMismatchError(session_id)

    application = await applier.apply(event)
    return VerifyPaymentResponse(
        payment_id=event.external_payment_id,
        credits_added=event.credits_to_add,
        already_applied=application.already_applied,
        transaction_id=application.transaction.transaction_id,
        balance=await ledger.get_balance(user.account_id),
    )
