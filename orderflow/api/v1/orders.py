"""Order endpoints: creation, table-driven actions, assignment, delivery, reads."""

import uuid
from typing import List, Optional

from fastapi import APIRouter, Query, status

from orderflow.api.deps import CurrentActor, Machine
from orderflow.config import get_settings
from orderflow.errors import ValidationFailedError
from orderflow.kernel.models.order import OrderStatus
from orderflow.orchestration.transitions import OrderAction, phase_of
from orderflow.schemas.common import PaginatedResponse
from orderflow.schemas.order import (
    AllowedActionsResponse,
    AssignWriterRequest,
    CloseOrderRequest,
    OrderActionRequest,
    OrderCreate,
    OrderHistoryResponse,
    OrderResponse,
)

router = APIRouter()
settings = get_settings()


@router.post("", response_model=OrderResponse, status_code=status.HTTP_201_CREATED)
async def create_order(data: OrderCreate, actor: CurrentActor, machine: Machine):
    """Place a new order (client)."""
    order = await machine.create_order(actor, data.topic, data.deadline, data.details)
    return OrderResponse.model_validate(order)


@router.get("", response_model=PaginatedResponse[OrderResponse])
async def list_orders(
    actor: CurrentActor,
    machine: Machine,
    status_filter: Optional[OrderStatus] = Query(None, alias="status"),
    page: int = Query(1, ge=1),
    page_size: int = Query(settings.default_page_size, ge=1, le=settings.max_page_size),
):
    """Orders visible to the caller."""
    orders, total = await machine.list_orders(
        actor, status=status_filter, page=page, page_size=page_size
    )
    return PaginatedResponse.create(
        items=[OrderResponse.model_validate(o) for o in orders],
        total=total,
        page=page,
        page_size=page_size,
    )


@router.get("/{order_id}", response_model=OrderResponse)
async def get_order(order_id: uuid.UUID, actor: CurrentActor, machine: Machine):
    order = await machine.get_order(order_id, actor)
    return OrderResponse.model_validate(order)


@router.get("/{order_id}/history", response_model=List[OrderHistoryResponse])
async def get_order_history(order_id: uuid.UUID, actor: CurrentActor, machine: Machine):
    entries = await machine.order_history(order_id, actor)
    return [OrderHistoryResponse.model_validate(e) for e in entries]


@router.get("/{order_id}/allowed-actions", response_model=AllowedActionsResponse)
async def get_allowed_actions(order_id: uuid.UUID, actor: CurrentActor, machine: Machine):
    """Actions the caller's role can take from the order's current status."""
    order, actions = await machine.allowed_actions(order_id, actor)
    return AllowedActionsResponse(
        status=order.status,
        phase=phase_of(order.status).value,
        actions=[a.value for a in actions],
    )


@router.post("/{order_id}/actions", response_model=OrderResponse)
async def apply_order_action(
    order_id: uuid.UUID,
    data: OrderActionRequest,
    actor: CurrentActor,
    machine: Machine,
):
    """Apply a status-only action such as send_quotation or verify_payment."""
    try:
        action = OrderAction(data.action)
    except ValueError:
        raise ValidationFailedError(
            f"Unknown action: {data.action}", context={"action": data.action}
        ) from None
    order = await machine.apply_action(order_id, action, actor, note=data.note)
    return OrderResponse.model_validate(order)


@router.post("/{order_id}/assign-writer", response_model=OrderResponse)
async def assign_writer(
    order_id: uuid.UUID,
    data: AssignWriterRequest,
    actor: CurrentActor,
    machine: Machine,
):
    order = await machine.assign_writer(order_id, actor, data.writer_id, note=data.note)
    return OrderResponse.model_validate(order)


@router.post("/{order_id}/deliver", response_model=OrderResponse)
async def deliver_order(order_id: uuid.UUID, actor: CurrentActor, machine: Machine):
    """Deliver approved work; fails with 409 if nothing is approved."""
    order = await machine.deliver_order(order_id, actor)
    return OrderResponse.model_validate(order)


@router.post("/{order_id}/close", response_model=OrderResponse)
async def close_order(
    order_id: uuid.UUID,
    data: CloseOrderRequest,
    actor: CurrentActor,
    machine: Machine,
):
    order = await machine.close_order(order_id, actor, data.closure_reason)
    return OrderResponse.model_validate(order)
