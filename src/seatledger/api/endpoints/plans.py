from typing import List

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from src.seatledger import models, schemas
from src.seatledger.api.deps import require
from src.seatledger.core.database import get_db
from src.seatledger.core.permissions import Capability
from src.seatledger.services.plan_catalog import plan_catalog

router = APIRouter(prefix="/plans", tags=["Plans"])


@router.get("", response_model=List[schemas.PlanResponse])
def list_plans(db: Session = Depends(get_db)):
    """Active plans; public so the pricing page can render before sign-up."""
    return plan_catalog.list_active(db)


@router.get("/{plan_id}", response_model=schemas.PlanResponse)
def get_plan(plan_id: int, db: Session = Depends(get_db)):
    return plan_catalog.get(db, plan_id)


@router.post("", response_model=schemas.PlanResponse, status_code=201)
def create_plan(
    data: schemas.PlanCreate,
    current_user: models.User = Depends(require(Capability.MANAGE_PLANS)),
    db: Session = Depends(get_db),
):
    return plan_catalog.create(db, data)


@router.patch("/{plan_id}", response_model=schemas.PlanResponse)
def update_plan(
    plan_id: int,
    data: schemas.PlanUpdate,
    current_user: models.User = Depends(require(Capability.MANAGE_PLANS)),
    db: Session = Depends(get_db),
):
    return plan_catalog.update(db, plan_id, data)


@router.delete("/{plan_id}", response_model=schemas.PlanResponse)
def deactivate_plan(
    plan_id: int,
    current_user: models.User = Depends(require(Capability.MANAGE_PLANS)),
    db: Session = Depends(get_db),
):
    """Soft delete: the plan disappears from the catalog, references stay."""
    return plan_catalog.deactivate(db, plan_id)
