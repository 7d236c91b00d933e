import logging

from fastapi import APIRouter, Depends, HTTPException
from fastapi.security import OAuth2PasswordRequestForm
from sqlalchemy.orm import Session

from src.seatledger import models, schemas
from src.seatledger.api.deps import get_current_user, get_processor
from src.seatledger.core.database import get_db
from src.seatledger.core.jwt import create_access_token
from src.seatledger.core.security import verify_password
from src.seatledger.services.organization_ledger import organization_ledger
from src.seatledger.services.processor import PaymentProcessor

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["Authentication"])


def _token_for(user: models.User) -> str:
    return create_access_token(
        {"sub": user.email, "user_id": user.id, "org_id": user.organization_id}
    )


def _authenticate(db: Session, email: str, password: str) -> models.User:
    user = db.query(models.User).filter(models.User.email == email.lower()).first()
    if not user or not verify_password(password, user.password_hash):
        raise HTTPException(
            status_code=401,
            detail="Invalid credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )
    if not user.is_active:
        raise HTTPException(status_code=403, detail="Your account has been deactivated")
    return user


@router.post("/register", response_model=schemas.RegistrationResponse, status_code=201)
def register(
    data: schemas.OrganizationRegister,
    db: Session = Depends(get_db),
    processor: PaymentProcessor = Depends(get_processor),
):
    """
    Register a new organization.

    Creates the Stripe customer, the organization on the Basic plan with a
    trial, and its admin user. The admin does not occupy a seat.
    """
    org, admin = organization_ledger.register(
        db,
        processor,
        name=data.name,
        billing_email=data.billing_email,
        admin_password=data.password,
        admin_first_name=data.first_name,
        admin_last_name=data.last_name,
    )
    return {
        "organization": org,
        "admin": admin,
        "access_token": _token_for(admin),
        "token_type": "bearer",
    }


@router.post("/login", response_model=schemas.Token)
def login(credentials: schemas.UserLogin, db: Session = Depends(get_db)):
    user = _authenticate(db, credentials.email, credentials.password)
    logger.info(f"User {user.id} logged in")
    return {"access_token": _token_for(user), "token_type": "bearer"}


@router.post("/token", response_model=schemas.Token)
def login_for_swagger(
    form_data: OAuth2PasswordRequestForm = Depends(), db: Session = Depends(get_db)
):
    """
    OAuth2 compatible token endpoint for Swagger UI authentication.

    Use username field for email address.
    """
    user = _authenticate(db, form_data.username, form_data.password)
    return {"access_token": _token_for(user), "token_type": "bearer"}


@router.get("/me", response_model=schemas.User)
def get_user_profile(current_user: models.User = Depends(get_current_user)):
    return current_user
