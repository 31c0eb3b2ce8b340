from __future__ import annotations

import logging

from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, col, select

from asset_buddy.domain.models import (
    Asset,
    AssetCreate,
    AssetStatus,
    AssetType,
    Assignment,
    now_utc,
)
from asset_buddy.domain.state_machine import OPEN_ASSIGNMENT_STATUSES
from asset_buddy.services.activity_log_service import ActivityLogService

logger = logging.getLogger(__name__)

MANUAL_ASSET_STATUSES = {AssetStatus.IN_STOCK, AssetStatus.IN_REPAIR, AssetStatus.RETIRED}


class AssetError(Exception):
    pass


class NotFoundError(AssetError):
    pass


class ValidationError(AssetError):
    pass


class ConflictError(AssetError):
    pass


class AssetRegistry:
    def __init__(self, activity_log: ActivityLogService | None = None) -> None:
        self._activity_log = activity_log or ActivityLogService()

    def create_asset(self, session: Session, payload: AssetCreate) -> Asset:
        asset = Asset(
            asset_tag=payload.asset_tag,
            asset_type=payload.asset_type,
            brand=payload.brand,
            model=payload.model,
            location=payload.location,
            department=payload.department,
            serial_number=payload.serial_number,
            imei_no=payload.imei_no,
            specifications=payload.specifications,
            notes=payload.notes,
            status=AssetStatus.IN_STOCK,
        )
        session.add(asset)
        try:
            session.flush()
            self._activity_log.record(
                session,
                action="ASSET_CREATED",
                entity_type="ASSET",
                entity_id=str(asset.id),
                message=f"Asset {asset.asset_tag} created",
            )
            session.commit()
        except IntegrityError as exc:
            session.rollback()
            raise ConflictError("asset tag already exists") from exc
        session.refresh(asset)
        logger.info("asset created id=%s tag=%s", asset.id, asset.asset_tag)
        return asset

    def get_asset(self, session: Session, asset_id: int) -> Asset:
        asset = session.get(Asset, asset_id)
        if asset is None:
            raise NotFoundError("asset not found")
        return asset

    def list_assets(
        self,
        session: Session,
        *,
        asset_type: AssetType | None = None,
        status: AssetStatus | None = None,
    ) -> list[Asset]:
        statement = select(Asset)
        if asset_type is not None:
            statement = statement.where(Asset.asset_type == asset_type)
        if status is not None:
            statement = statement.where(Asset.status == status)
        return list(session.exec(statement.order_by(Asset.asset_tag)).all())

    def get_asset_for_update(self, session: Session, asset_id: int) -> Asset | None:
        statement = (
            select(Asset)
            .where(Asset.id == asset_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return session.exec(statement).first()

    def set_asset_status(self, session: Session, asset: Asset, status: AssetStatus) -> bool:
        if asset.status == status:
            return False
        asset.status = status
        asset.updated_at = now_utc()
        session.add(asset)
        return True

    def update_manual_status(self, session: Session, asset_id: int, status: AssetStatus) -> Asset:
        if status not in MANUAL_ASSET_STATUSES:
            raise ValidationError("ASSIGNED is derived from assignments and cannot be set manually")
        asset = self.get_asset_for_update(session, asset_id)
        if asset is None:
            session.rollback()
            raise NotFoundError("asset not found")
        open_assignment = session.exec(
            select(Assignment.id)
            .where(Assignment.asset_id == asset_id)
            .where(col(Assignment.status).in_(sorted(OPEN_ASSIGNMENT_STATUSES)))
            .with_for_update()
        ).first()
        if open_assignment is not None:
            session.rollback()
            raise ConflictError("asset has an open assignment")
        previous = asset.status
        if self.set_asset_status(session, asset, status):
            self._activity_log.record(
                session,
                action="ASSET_STATUS_CHANGED",
                entity_type="ASSET",
                entity_id=str(asset.id),
                message=f"Asset {asset.asset_tag} status {previous} -> {status}",
            )
        session.commit()
        session.refresh(asset)
        return asset
