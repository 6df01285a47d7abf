from typing import Any, Dict

from fastapi import APIRouter, Body, Depends, Request, status

from schoolboard.query.hydration import dehydrate
from schoolboard.schemas.list import DetailPayload, ListPayload
from schoolboard.schemas.response import APIResponse
from schoolboard.services.list_page import ListPageController
from schoolboard.utils.deps import get_list_controller, get_session
from schoolboard.utils.permission import PermissionHelper
from schoolboard.services.session import Session

router = APIRouter()


@router.get("/{entity}", response_model=APIResponse[ListPayload])
async def read_list(
    entity: str,
    request: Request,
    controller: ListPageController = Depends(get_list_controller),
):
    """Server render of a list page plus the snapshot the browser hydrates from."""
    controller.entity(entity)
    view = await controller.load(entity, request.query_params)
    payload = ListPayload(view=view, dehydrated_state=dehydrate(controller.client))
    return APIResponse(message=f"{entity.capitalize()} list retrieved", data=payload)


@router.get("/{entity}/{record_id}", response_model=APIResponse[DetailPayload])
async def read_detail(
    entity: str,
    record_id: str,
    controller: ListPageController = Depends(get_list_controller),
):
    controller.entity(entity)
    view = await controller.load_detail(entity, record_id)
    payload = DetailPayload(view=view, dehydrated_state=dehydrate(controller.client))
    return APIResponse(message=f"{entity.capitalize()} retrieved", data=payload)


@router.post("/{entity}", response_model=APIResponse[Dict[str, Any]], status_code=status.HTTP_201_CREATED)
async def create_record(
    entity: str,
    values: Dict[str, Any] = Body(...),
    session: Session = Depends(get_session),
    controller: ListPageController = Depends(get_list_controller),
):
    controller.entity(entity)
    PermissionHelper.require_mutation(session, entity)
    record = await controller.create(entity, values)
    return APIResponse(message=f"{entity.capitalize()} created", data=record)


@router.patch("/{entity}/{record_id}", response_model=APIResponse[Dict[str, Any]])
async def update_record(
    entity: str,
    record_id: str,
    values: Dict[str, Any] = Body(...),
    session: Session = Depends(get_session),
    controller: ListPageController = Depends(get_list_controller),
):
    controller.entity(entity)
    PermissionHelper.require_mutation(session, entity)
    record = await controller.update(entity, record_id, values)
    return APIResponse(message=f"{entity.capitalize()} updated", data=record)


@router.delete("/{entity}/{record_id}", response_model=APIResponse[Dict[str, Any]])
async def delete_record(
    entity: str,
    record_id: str,
    session: Session = Depends(get_session),
    controller: ListPageController = Depends(get_list_controller),
):
    controller.entity(entity)
    PermissionHelper.require_mutation(session, entity)
    deleted = await controller.delete(entity, record_id)
    return APIResponse(message=f"{entity.capitalize()} deleted", data={"deleted": deleted})
