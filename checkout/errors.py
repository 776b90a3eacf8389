"""Failure taxonomy for order creation and payment settlement.

Each error carries a machine-readable ``kind``, a human-readable ``detail``
and free-form ``context`` for diagnostics. The HTTP layer renders them with
``to_dict()`` and ``status_code``.
"""


class OrderError(Exception):
    kind = "order_error"
    status_code = 500

    def __init__(self, detail: str, **context):
        super().__init__(detail)
        self.detail = detail
        self.context = context

    def to_dict(self) -> dict:
        return {
            "success": False,
            "kind": self.kind,
            "message": self.detail,
            "details": self.context,
        }


class ValidationError(OrderError):
    """Bad input shape or amount. Nothing has been written anywhere."""

    kind = "validation_error"
    status_code = 400


class GatewayError(OrderError):
    """Transport failure or an error reported by the payment gateway."""

    kind = "gateway_error"
    status_code = 502

    def __init__(self, detail: str, raw=None, **context):
        super().__init__(detail, raw=raw, **context)
        self.raw = raw


class PaymentNotApproved(OrderError):
    kind = "payment_not_approved"
    status_code = 402


class NotFound(OrderError):
    kind = "not_found"
    status_code = 404


class OrderNotFound(NotFound):
    kind = "order_not_found"


class ProductNotFound(NotFound):
    kind = "product_not_found"


class SizeNotFound(NotFound):
    kind = "size_not_found"


class InsufficientStock(OrderError):
    kind = "insufficient_stock"
    status_code = 409


class PersistenceError(OrderError):
    kind = "persistence_error"
    status_code = 500


class SettlementIncomplete(OrderError):
    """The gateway captured the money but local reconciliation did not finish.

    Needs manual reconciliation. ``cause`` is the error that stopped
    settlement. Stock and order were rolled back to their state before the
    capture.
    """

    kind = "captured_but_unsettled"
    status_code = 500

    def __init__(self, order_id: str, payment_id: str, cause: OrderError):
        super().__init__(
            f"Payment {payment_id} was captured but order {order_id} could not be settled: {cause.detail}",
            order_id=order_id,
            payment_id=payment_id,
            reason=cause.kind,
            cause=cause.context,
        )
        self.order_id = order_id
        self.payment_id = payment_id
        self.cause = cause
