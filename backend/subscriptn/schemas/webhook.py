"""
ZapPlanner webhook payloads.

Each known event name decodes into its own model; anything else is kept as an
UnknownEvent so the receiver can acknowledge it without acting on it.
"""
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter, field_validator
from pydantic import ValidationError as PydanticValidationError

SUBSCRIPTION_CREATED = "subscription.created"
PAYMENT_SUCCEEDED = "subscription.payment_succeeded"
PAYMENT_FAILED = "subscription.payment_failed"
SUBSCRIPTION_CANCELLED = "subscription.cancelled"

KNOWN_EVENTS = (SUBSCRIPTION_CREATED, PAYMENT_SUCCEEDED, PAYMENT_FAILED, SUBSCRIPTION_CANCELLED)


class WebhookMetadata(BaseModel):
    subscription_id: int = Field(alias="subscriptionId", gt=0)

    class Config:
        populate_by_name = True


class _ZapPlannerEvent(BaseModel):
    # ZapPlanner's own subscription id; may arrive as a number
    subscription_id: Optional[str] = None

    @field_validator("subscription_id", mode="before")
    @classmethod
    def _stringify_external_id(cls, value):
        if value is None:
            return None
        return str(value)


class SubscriptionCreatedEvent(_ZapPlannerEvent):
    event: Literal["subscription.created"]
    subscription_id: str
    metadata: WebhookMetadata


class PaymentSucceededEvent(_ZapPlannerEvent):
    event: Literal["subscription.payment_succeeded"]
    amount: Optional[int] = Field(default=None, gt=0)
    metadata: WebhookMetadata


class PaymentFailedEvent(_ZapPlannerEvent):
    event: Literal["subscription.payment_failed"]
    amount: Optional[int] = Field(default=None, gt=0)
    metadata: WebhookMetadata


class SubscriptionCancelledEvent(_ZapPlannerEvent):
    event: Literal["subscription.cancelled"]
    subscription_id: str


class UnknownEvent(BaseModel):
    event: Optional[str] = None
    reason: str = "unrecognized event"


ZapPlannerEvent = Annotated[
    Union[
        SubscriptionCreatedEvent,
        PaymentSucceededEvent,
        PaymentFailedEvent,
        SubscriptionCancelledEvent,
    ],
    Field(discriminator="event"),
]

_event_adapter = TypeAdapter(ZapPlannerEvent)


def decode_event(payload) -> Union[
    SubscriptionCreatedEvent,
    PaymentSucceededEvent,
    PaymentFailedEvent,
    SubscriptionCancelledEvent,
    UnknownEvent,
]:
    """Decode a raw webhook body. Never raises; bad input becomes an UnknownEvent."""
    if not isinstance(payload, dict):
        return UnknownEvent(reason="payload is not a JSON object")

    event_name = payload.get("event")
    if not isinstance(event_name, str) or event_name not in KNOWN_EVENTS:
        return UnknownEvent(event=event_name if isinstance(event_name, str) else None)

    try:
        return _event_adapter.validate_python(payload)
    except PydanticValidationError as e:
        return UnknownEvent(event=event_name, reason=f"malformed payload: {e.error_count()} error(s)")
