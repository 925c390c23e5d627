"""
Order Endpoints

Every mutation answers with the full order and pushes the same order to all
websocket subscribers of that order.

    GET    /orders/current?tableId=   get or create the table's current order
    GET    /orders/{order_id}         order detail
    POST   /orders/{order_id}/items   add a menu item          -> add_item
    DELETE /orders/{order_id}/items   remove an order item     -> delete_item
    PATCH  /orders/{order_id}         status and/or tip        -> update_order
    POST   /orders/{order_id}/waiters assign the calling waiter -> update_order
    DELETE /orders/{order_id}/waiters remove the calling waiter -> update_order
    POST   /orders/{order_id}/payments open a checkout session
"""

import logging
from uuid import UUID

from fastapi import APIRouter, Depends, Query

from dining.dependencies import (
    get_checkout_service,
    get_hub,
    get_optional_claims,
    get_orders_service,
    require_roles,
)
from dining.models import StaffRole
from dining.schemas import (
    CheckoutSessionRequest,
    CheckoutSessionResponse,
    CurrentOrderResponse,
    ErrorResponse,
    OrderItemRequest,
    OrderResponse,
    RemoveWaiterRequest,
    SuccessResponse,
    TokenClaims,
    UpdateOrderRequest,
)
from dining.services.checkout import CheckoutService
from dining.services.orders import OrdersService
from dining.services.realtime import BroadcastHub, WSMessageType

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/orders",
    tags=["Orders"],
    responses={
        404: {"model": ErrorResponse},
        409: {"model": ErrorResponse},
        500: {"model": ErrorResponse},
    },
)

require_staff = require_roles(StaffRole.MANAGER, StaffRole.WAITER)


@router.get(
    "/current",
    response_model=SuccessResponse[CurrentOrderResponse],
    summary="Get or Create Current Order of a Table",
)
async def get_current_order(
    table_id: UUID = Query(..., alias="tableId"),
    orders: OrdersService = Depends(get_orders_service),
) -> SuccessResponse[CurrentOrderResponse]:
    current = await orders.get_or_create_current_order(table_id)
    return SuccessResponse(message="current order", data=current)


@router.get(
    "/{order_id}",
    response_model=SuccessResponse[OrderResponse],
    summary="Get Order",
)
async def get_order(
    order_id: UUID,
    orders: OrdersService = Depends(get_orders_service),
) -> SuccessResponse[OrderResponse]:
    order = await orders.get_order(order_id)
    return SuccessResponse(message="order", data=order)


@router.post(
    "/{order_id}/items",
    response_model=SuccessResponse[OrderResponse],
    responses={400: {"model": ErrorResponse}},
    summary="Add Item to Order",
)
async def add_item(
    order_id: UUID,
    body: OrderItemRequest,
    orders: OrdersService = Depends(get_orders_service),
    hub: BroadcastHub = Depends(get_hub),
) -> SuccessResponse[OrderResponse]:
    order = await orders.add_item_to_order(order_id, body.item_id)
    await hub.broadcast(order_id, WSMessageType.ADD_ITEM, order)
    return SuccessResponse(message="item added to order", data=order)


@router.delete(
    "/{order_id}/items",
    response_model=SuccessResponse[OrderResponse],
    summary="Delete Item from Order",
)
async def delete_item(
    order_id: UUID,
    body: OrderItemRequest,
    orders: OrdersService = Depends(get_orders_service),
    hub: BroadcastHub = Depends(get_hub),
) -> SuccessResponse[OrderResponse]:
    order = await orders.delete_order_item(order_id, body.item_id)
    await hub.broadcast(order_id, WSMessageType.DELETE_ITEM, order)
    return SuccessResponse(message="item deleted from order", data=order)


@router.patch(
    "/{order_id}",
    response_model=SuccessResponse[OrderResponse],
    responses={400: {"model": ErrorResponse}, 403: {"model": ErrorResponse}},
    summary="Update Order Status or Tip",
)
async def update_order(
    order_id: UUID,
    body: UpdateOrderRequest,
    claims: TokenClaims = Depends(get_optional_claims),
    orders: OrdersService = Depends(get_orders_service),
    hub: BroadcastHub = Depends(get_hub),
) -> SuccessResponse[OrderResponse]:
    """
    Customers may only lock their order; any other status change, and any
    status change on a locked order, needs restaurant staff.
    """
    order = await orders.update_order(order_id, body, claims)
    await hub.broadcast(order_id, WSMessageType.UPDATE_ORDER, order)
    return SuccessResponse(message="order updated", data=order)


@router.post(
    "/{order_id}/waiters",
    response_model=SuccessResponse[OrderResponse],
    responses={401: {"model": ErrorResponse}, 403: {"model": ErrorResponse}},
    summary="Assign Calling Waiter",
)
async def assign_waiter(
    order_id: UUID,
    claims: TokenClaims = Depends(require_staff),
    orders: OrdersService = Depends(get_orders_service),
    hub: BroadcastHub = Depends(get_hub),
) -> SuccessResponse[OrderResponse]:
    order = await orders.assign_waiter(order_id, claims.user_id)
    await hub.broadcast(order_id, WSMessageType.UPDATE_ORDER, order)
    return SuccessResponse(message="waiter assigned", data=order)


@router.delete(
    "/{order_id}/waiters",
    response_model=SuccessResponse[OrderResponse],
    responses={401: {"model": ErrorResponse}, 403: {"model": ErrorResponse}},
    summary="Remove Calling Waiter",
)
async def remove_waiter(
    order_id: UUID,
    body: RemoveWaiterRequest,
    claims: TokenClaims = Depends(require_staff),
    orders: OrdersService = Depends(get_orders_service),
    hub: BroadcastHub = Depends(get_hub),
) -> SuccessResponse[OrderResponse]:
    order = await orders.remove_waiter(order_id, claims.user_id, body.assign_id)
    await hub.broadcast(order_id, WSMessageType.UPDATE_ORDER, order)
    return SuccessResponse(message="waiter removed", data=order)


@router.post(
    "/{order_id}/payments",
    response_model=SuccessResponse[CheckoutSessionResponse],
    responses={400: {"model": ErrorResponse}, 502: {"model": ErrorResponse}},
    summary="Create Checkout Session",
)
async def create_checkout_session(
    order_id: UUID,
    body: CheckoutSessionRequest,
    checkout: CheckoutService = Depends(get_checkout_service),
) -> SuccessResponse[CheckoutSessionResponse]:
    session = await checkout.create_checkout(order_id, body.success_url, body.cancel_url)
    return SuccessResponse(message="checkout session created", data=session)
