from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlmodel import Session

from asset_buddy.api.deps import require_perm
from asset_buddy.domain.models import (
    AssetCreate,
    AssetRead,
    AssetStatus,
    AssetStatusUpdateRequest,
    AssetType,
)
from asset_buddy.domain.permissions import PERM_ASSET_READ, PERM_ASSET_WRITE
from asset_buddy.infra.db import get_session
from asset_buddy.services.asset_registry_service import (
    AssetRegistry,
    ConflictError,
    NotFoundError,
    ValidationError,
)

router = APIRouter()


def get_asset_registry() -> AssetRegistry:
    return AssetRegistry()


Registry = Annotated[AssetRegistry, Depends(get_asset_registry)]
DbSession = Annotated[Session, Depends(get_session)]


def _handle_asset_error(exc: Exception) -> None:
    if isinstance(exc, NotFoundError):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    if isinstance(exc, ValidationError):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    if isinstance(exc, ConflictError):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    raise exc


@router.post(
    "",
    response_model=AssetRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_perm(PERM_ASSET_WRITE))],
)
def create_asset(payload: AssetCreate, session: DbSession, registry: Registry) -> AssetRead:
    try:
        asset = registry.create_asset(session, payload)
        return AssetRead.model_validate(asset)
    except (NotFoundError, ConflictError) as exc:
        _handle_asset_error(exc)
        raise


@router.get(
    "",
    response_model=list[AssetRead],
    dependencies=[Depends(require_perm(PERM_ASSET_READ))],
)
def list_assets(
    session: DbSession,
    registry: Registry,
    asset_type: AssetType | None = None,
    asset_status: Annotated[AssetStatus | None, Query(alias="status")] = None,
) -> list[AssetRead]:
    rows = registry.list_assets(session, asset_type=asset_type, status=asset_status)
    return [AssetRead.model_validate(item) for item in rows]


@router.get(
    "/{asset_id}",
    response_model=AssetRead,
    dependencies=[Depends(require_perm(PERM_ASSET_READ))],
)
def get_asset(asset_id: int, session: DbSession, registry: Registry) -> AssetRead:
    try:
        asset = registry.get_asset(session, asset_id)
        return AssetRead.model_validate(asset)
    except NotFoundError as exc:
        _handle_asset_error(exc)
        raise


@router.post(
    "/{asset_id}/status",
    response_model=AssetRead,
    dependencies=[Depends(require_perm(PERM_ASSET_WRITE))],
)
def update_asset_status(
    asset_id: int,
    payload: AssetStatusUpdateRequest,
    session: DbSession,
    registry: Registry,
) -> AssetRead:
    try:
        asset = registry.update_manual_status(session, asset_id, payload.status)
        return AssetRead.model_validate(asset)
    except (NotFoundError, ValidationError, ConflictError) as exc:
        _handle_asset_error(exc)
        raise
