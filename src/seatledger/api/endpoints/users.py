"""
Seat management for the caller's organization.

Only organization admins may add, deactivate or remove members; every
change goes through the seat manager so the seat count stays consistent.
"""

from typing import List

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from src.seatledger import models, schemas
from src.seatledger.api.deps import require
from src.seatledger.core.database import get_db
from src.seatledger.core.permissions import Capability
from src.seatledger.services.seat_manager import seat_manager

router = APIRouter(prefix="/users", tags=["Users"])


@router.get("", response_model=List[schemas.User])
def list_users(
    current_user: models.User = Depends(require(Capability.VIEW_ORGANIZATION)),
    db: Session = Depends(get_db),
):
    return seat_manager.list_users(db, current_user.organization_id)


@router.post("", response_model=schemas.User, status_code=201)
def add_user(
    data: schemas.UserCreate,
    current_user: models.User = Depends(require(Capability.MANAGE_SEATS)),
    db: Session = Depends(get_db),
):
    return seat_manager.add_user(
        db,
        current_user.organization_id,
        email=data.email,
        password=data.password,
        first_name=data.first_name,
        last_name=data.last_name,
    )


@router.patch("/{user_id}", response_model=schemas.User)
def set_user_active(
    user_id: int,
    data: schemas.UserActiveUpdate,
    current_user: models.User = Depends(require(Capability.MANAGE_SEATS)),
    db: Session = Depends(get_db),
):
    return seat_manager.set_user_active(
        db, current_user.organization_id, user_id, data.is_active
    )


@router.delete("/{user_id}", response_model=schemas.User)
def remove_user(
    user_id: int,
    current_user: models.User = Depends(require(Capability.MANAGE_SEATS)),
    db: Session = Depends(get_db),
):
    return seat_manager.remove_user(db, current_user.organization_id, user_id)
