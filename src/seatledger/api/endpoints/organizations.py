from typing import List

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from src.seatledger import models, schemas
from src.seatledger.api.deps import require
from src.seatledger.core.database import get_db
from src.seatledger.core.permissions import Capability
from src.seatledger.services.order_ledger import order_ledger
from src.seatledger.services.organization_ledger import organization_ledger

router = APIRouter(prefix="/organizations", tags=["Organizations"])


@router.get("", response_model=List[schemas.Organization])
def list_organizations(
    current_user: models.User = Depends(require(Capability.VIEW_ALL_ORGANIZATIONS)),
    db: Session = Depends(get_db),
):
    return organization_ledger.list_all(db)


@router.get("/me", response_model=schemas.Organization)
def get_my_organization(
    current_user: models.User = Depends(require(Capability.VIEW_ORGANIZATION)),
    db: Session = Depends(get_db),
):
    return organization_ledger.get(db, current_user.organization_id)


@router.patch("/me", response_model=schemas.Organization)
def update_my_organization(
    data: schemas.OrganizationUpdate,
    current_user: models.User = Depends(require(Capability.MANAGE_BILLING)),
    db: Session = Depends(get_db),
):
    org = organization_ledger.get(db, current_user.organization_id)
    return organization_ledger.update_details(
        db,
        org,
        name=data.name,
        billing_email=data.billing_email,
        address=data.address.model_dump(exclude_unset=True) if data.address else None,
    )


@router.get("/me/orders", response_model=List[schemas.Order])
def list_my_orders(
    current_user: models.User = Depends(require(Capability.MANAGE_BILLING)),
    db: Session = Depends(get_db),
):
    """Billing history, newest first."""
    return order_ledger.list_for_organization(db, current_user.organization_id)
