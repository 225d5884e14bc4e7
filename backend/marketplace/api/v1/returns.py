"""
Return API endpoints for customers and the back office.
"""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status

from marketplace.api.deps import (
    CurrentAdmin,
    CurrentCustomer,
    CurrentPrincipal,
    get_return_workflow,
)
from marketplace.schemas.returns import (
    ReturnCreate,
    ReturnListResponse,
    ReturnRejection,
    ReturnResponse,
)
from marketplace.services.returns.workflow import ReturnWorkflow

router = APIRouter(prefix="/returns", tags=["returns"])

Workflow = Annotated[ReturnWorkflow, Depends(get_return_workflow)]


@router.post(
    "/",
    response_model=ReturnResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Request a return",
)
async def create_return(
    request: ReturnCreate,
    principal: CurrentCustomer,
    workflow: Workflow,
) -> ReturnResponse:
    created = await workflow.create(
        request.order_id,
        principal,
        reason=request.reason,
        quantity=request.quantity,
        refund_method=request.refund_method,
        order_item_id=request.order_item_id,
    )
    return ReturnResponse.model_validate(created)


@router.get("/", response_model=ReturnListResponse, summary="List returns")
async def list_returns(
    principal: CurrentPrincipal,
    workflow: Workflow,
    page: Annotated[int, Query(ge=1)] = 1,
    page_size: Annotated[int, Query(ge=1, le=100)] = 20,
) -> ReturnListResponse:
    requests, total = await workflow.list_for_user(principal, page, page_size)
    return ReturnListResponse(
        items=[ReturnResponse.model_validate(r) for r in requests],
        total=total,
        page=page,
        page_size=page_size,
    )


@router.get("/{return_id}", response_model=ReturnResponse, summary="Get return")
async def get_return(
    return_id: UUID,
    principal: CurrentPrincipal,
    workflow: Workflow,
) -> ReturnResponse:
    return ReturnResponse.model_validate(await workflow.get(return_id, principal))


@router.post("/{return_id}/approve", response_model=ReturnResponse, summary="Approve return")
async def approve_return(
    return_id: UUID,
    principal: CurrentAdmin,
    workflow: Workflow,
) -> ReturnResponse:
    return ReturnResponse.model_validate(
        await workflow.approve(return_id, principal.user_id)
    )


@router.post("/{return_id}/reject", response_model=ReturnResponse, summary="Reject return")
async def reject_return(
    return_id: UUID,
    rejection: ReturnRejection,
    principal: CurrentAdmin,
    workflow: Workflow,
) -> ReturnResponse:
    return ReturnResponse.model_validate(
        await workflow.reject(return_id, rejection.reason, principal.user_id)
    )


@router.post("/{return_id}/receive", response_model=ReturnResponse, summary="Mark received")
async def mark_return_received(
    return_id: UUID,
    principal: CurrentAdmin,
    workflow: Workflow,
) -> ReturnResponse:
    return ReturnResponse.model_validate(await workflow.mark_received(return_id))


@router.post("/{return_id}/refund", response_model=ReturnResponse, summary="Issue refund")
async def issue_return_refund(
    return_id: UUID,
    principal: CurrentAdmin,
    workflow: Workflow,
) -> ReturnResponse:
    return ReturnResponse.model_validate(await workflow.issue_refund(return_id))
