"""Stripe-backed payment gateway.

A payment intent is a Checkout Session with manual capture: the shopper
approves it on the session URL, and ``execute_payment`` captures the
underlying PaymentIntent afterwards.
"""
import logging
from dataclasses import dataclass
from typing import Sequence

import stripe

from checkout.config import GatewayConfig
from checkout.errors import GatewayError, PaymentNotApproved
from checkout.money import GatewayLineItem

logger = logging.getLogger(__name__)

APPROVED_STATE = "succeeded"


@dataclass(frozen=True)
class PaymentIntent:
    intent_id: str
    approval_url: str


@dataclass(frozen=True)
class PaymentExecution:
    state: str
    payment_id: str

    @property
    def approved(self) -> bool:
        return self.state == APPROVED_STATE


def _gateway_error(action: str, exc: stripe.StripeError) -> GatewayError:
    return GatewayError(
        f"Error {action} Stripe payment: {exc.user_message or str(exc)}",
        raw=exc.json_body,
        code=exc.code,
        http_status=exc.http_status,
    )


class StripeGateway:
    def __init__(self, config: GatewayConfig, client=None):
        self.config = config
        self.client = client or stripe.StripeClient(
            config.secret_key,
            http_client=stripe.RequestsClient(timeout=config.timeout),
        )

    def create_payment_intent(
        self,
        amount_total: int,
        currency: str,
        line_items: Sequence[GatewayLineItem],
        return_url: str,
        cancel_url: str,
        idempotency_key: str = None,
    ) -> PaymentIntent:
        params = {
            "mode": "payment",
            "line_items": [
                {
                    "price_data": {
                        "currency": currency,
                        "unit_amount": item.unit_cents,
                        "product_data": {
                            "name": item.name,
                            "metadata": {"product_id": item.product_id},
                        },
                    },
                    "quantity": item.quantity,
                }
                for item in line_items
            ],
            "payment_intent_data": {"capture_method": "manual"},
            "success_url": return_url,
            "cancel_url": cancel_url,
        }
        options = {"idempotency_key": idempotency_key} if idempotency_key else {}

        try:
            session = self.client.checkout.sessions.create(params=params, options=options)
        except stripe.StripeError as exc:
            logger.error("Stripe session creation failed: %s", exc)
            raise _gateway_error("creating", exc) from exc

        if session.amount_total != amount_total:
            raise GatewayError(
                "Stripe session total does not match order total",
                raw={"session": session.id, "amount_total": session.amount_total},
                expected=amount_total,
            )

        logger.info("Stripe session created: %s", session.id)
        return PaymentIntent(intent_id=session.id, approval_url=session.url)

    def execute_payment(self, intent_id: str, payer_id: str) -> PaymentExecution:
        try:
            session = self.client.checkout.sessions.retrieve(intent_id)
            if not session.payment_intent:
                raise PaymentNotApproved(
                    "Payment was not approved", payment_id=intent_id, state=session.status
                )
            intent = self.client.payment_intents.retrieve(session.payment_intent)
            if intent.status == APPROVED_STATE:
                # Already captured, e.g. a retry after a lost response.
                return PaymentExecution(state=intent.status, payment_id=intent.id)
            if intent.status != "requires_capture":
                raise PaymentNotApproved(
                    "Payment was not approved", payment_id=intent_id, state=intent.status
                )
            try:
                captured = self.client.payment_intents.capture(
                    intent.id, params={"metadata": {"payer_id": payer_id}}
                )
            except stripe.InvalidRequestError:
                # Another worker may have captured it in between.
                captured = self.client.payment_intents.retrieve(intent.id)
                if captured.status != APPROVED_STATE:
                    raise
        except stripe.CardError as exc:
            raise PaymentNotApproved(
                f"Payment was declined: {exc.user_message or str(exc)}",
                payment_id=intent_id,
                code=exc.code,
            ) from exc
        except stripe.StripeError as exc:
            logger.error("Stripe capture failed for %s: %s", intent_id, exc)
            raise _gateway_error("executing", exc) from exc

        logger.info("Stripe payment captured: %s state=%s", captured.id, captured.status)
        return PaymentExecution(state=captured.status, payment_id=captured.id)
