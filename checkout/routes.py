from functools import lru_cache
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, Field

from checkout.auth import require_admin, verify_token
from checkout.config import settings
from checkout.database import SessionLocal
from checkout.stripe_service import StripeGateway
from checkout.workflow import OrderWorkflow

router = APIRouter(prefix="/orders")
admin_router = APIRouter(prefix="/admin/orders")


class CartItem(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    product_id: Optional[str] = Field(None, alias="productId")
    title: Optional[str] = None
    price: Optional[int] = None
    quantity: Optional[int] = None
    size: Optional[str] = None


class OrderRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_id: str = Field(..., alias="userId")
    cart_items: List[CartItem] = Field(..., alias="cartItems")
    address_info: Dict[str, Any] = Field(..., alias="addressInfo")
    cart_id: Optional[str] = Field(None, alias="cartId")
    total_amount: Optional[int] = Field(None, alias="totalAmount")


class OrderStatusRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    order_status: str = Field(..., alias="orderStatus")


class CaptureRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    order_id: str = Field(..., alias="orderId")
    payment_id: str = Field(..., alias="paymentId")
    payer_id: str = Field(..., alias="payerId")


@lru_cache
def get_workflow() -> OrderWorkflow:
    return OrderWorkflow(SessionLocal, StripeGateway(settings.gateway), settings.gateway)


@router.post("", status_code=201)
def create_order(
    request: OrderRequest,
    workflow: OrderWorkflow = Depends(get_workflow),
    auth=Depends(verify_token)
):
    created = workflow.initiate_order(
        request.user_id,
        [item.model_dump() for item in request.cart_items],
        request.address_info,
        cart_id=request.cart_id,
        total_amount=request.total_amount,
    )
    return {"success": True, "orderId": created.order_id, "approvalURL": created.approval_url}


@router.post("/capture")
def capture_payment(
    request: CaptureRequest,
    workflow: OrderWorkflow = Depends(get_workflow),
    auth=Depends(verify_token)
):
    result = workflow.settle_payment(request.order_id, request.payment_id, request.payer_id)
    return {"success": True, "message": "Order processed successfully", "data": result.to_dict()}


@router.get("/user/{user_id}")
def list_orders(user_id: str, workflow: OrderWorkflow = Depends(get_workflow), auth=Depends(verify_token)):
    return {"success": True, "data": workflow.list_orders_for_user(user_id)}


@router.get("/{order_id}")
def order_details(order_id: str, workflow: OrderWorkflow = Depends(get_workflow), auth=Depends(verify_token)):
    return {"success": True, "data": workflow.get_order(order_id)}


@admin_router.get("/{order_id}")
def admin_order_details(order_id: str, workflow: OrderWorkflow = Depends(get_workflow), admin=Depends(require_admin)):
    return {"success": True, "data": workflow.get_order(order_id)}


@admin_router.put("/{order_id}/status")
def update_order_status(
    order_id: str,
    request: OrderStatusRequest,
    workflow: OrderWorkflow = Depends(get_workflow),
    admin=Depends(require_admin)
):
    order = workflow.update_order_status(order_id, request.order_status)
    return {"success": True, "message": "Order status is updated successfully!", "data": order}
