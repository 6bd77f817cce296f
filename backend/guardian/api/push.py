"""
Guardian Angel - Push Notifications API
=======================================

Browser push subscriptions. Subscribing upserts by endpoint and sends a
best-effort test notification.
"""

from datetime import datetime, timezone
from typing import Annotated

import structlog
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import select

from guardian.api.deps import CurrentUser, DbSession
from guardian.core.integrations import PushNotifier, get_push_notifier
from guardian.core.models import PushSubscription
from guardian.core.schemas import (
    MessageResponse,
    PushPublicKeyResponse,
    PushSubscriptionCreate,
    PushSubscriptionResponse,
    PushUnsubscribe,
)

logger = structlog.get_logger()

router = APIRouter(prefix="/push", tags=["Push Notifications"])

Notifier = Annotated[PushNotifier, Depends(get_push_notifier)]

TEST_TITLE = "Test Notification"
TEST_BODY = "Notifications are working!"


async def _deliver(
    notifier: PushNotifier,
    subscription: PushSubscription,
    title: str,
    body: str,
) -> bool:
    """Send to one subscription and update its bookkeeping. Caller commits."""
    result = await notifier.send(subscription.subscription, title, body)
    if result.success:
        subscription.failure_count = 0
        subscription.last_used_at = datetime.now(timezone.utc)
        return True

    subscription.failure_count += 1
    if result.should_unsubscribe:
        subscription.is_active = False
        logger.info("push_subscription_expired", subscription_id=str(subscription.id))
    return False


@router.get("/public-key", response_model=PushPublicKeyResponse, summary="VAPID public key")
async def public_key(notifier: Notifier) -> PushPublicKeyResponse:
    return PushPublicKeyResponse(public_key=notifier.public_key, enabled=notifier.enabled)


@router.post(
    "/subscribe",
    response_model=PushSubscriptionResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Register a push subscription",
)
async def subscribe(
    data: PushSubscriptionCreate,
    current_user: CurrentUser,
    db: DbSession,
    notifier: Notifier,
) -> PushSubscriptionResponse:
    """
    Store a browser subscription, replacing any previous one with the same
    endpoint, then send a test notification. A failed test send does not
    fail the request.
    """
    info = data.model_dump(by_alias=True, exclude_none=True)

    result = await db.execute(select(PushSubscription).where(PushSubscription.endpoint == data.endpoint))
    subscription = result.scalar_one_or_none()
    if subscription is None:
        subscription = PushSubscription(user_id=current_user.id, endpoint=data.endpoint, subscription=info)
        db.add(subscription)
    else:
        subscription.user_id = current_user.id
        subscription.subscription = info
        subscription.is_active = True
        subscription.failure_count = 0
    await db.flush()

    if not await _deliver(notifier, subscription, TEST_TITLE, TEST_BODY):
        logger.warning("push_test_notification_failed", user_id=str(current_user.id))

    await db.commit()
    await db.refresh(subscription)
    return PushSubscriptionResponse.model_validate(subscription)


@router.delete("/subscribe", response_model=MessageResponse, summary="Remove a push subscription")
async def unsubscribe(
    data: PushUnsubscribe,
    current_user: CurrentUser,
    db: DbSession,
) -> MessageResponse:
    result = await db.execute(
        select(PushSubscription).where(
            PushSubscription.endpoint == data.endpoint,
            PushSubscription.user_id == current_user.id,
        )
    )
    subscription = result.scalar_one_or_none()
    if subscription is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Subscription not found",
        )
    await db.delete(subscription)
    await db.commit()
    return MessageResponse(message="Unsubscribed")


@router.post("/test", response_model=MessageResponse, summary="Send a test notification")
async def send_test(current_user: CurrentUser, db: DbSession, notifier: Notifier) -> MessageResponse:
    """Send the test notification to every active subscription of the user."""
    result = await db.execute(
        select(PushSubscription).where(
            PushSubscription.user_id == current_user.id,
            PushSubscription.is_active.is_(True),
        )
    )
    subscriptions = result.scalars().all()

    sent = 0
    for subscription in subscriptions:
        if await _deliver(notifier, subscription, TEST_TITLE, TEST_BODY):
            sent += 1
    await db.commit()

    return MessageResponse(
        message=f"Sent to {sent} of {len(subscriptions)} subscriptions",
        success=sent > 0,
    )
