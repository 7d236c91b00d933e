import logging

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.orm import Session

from src.seatledger import models
from src.seatledger.core.database import get_db
from src.seatledger.core.jwt import verify_token
from src.seatledger.core.permissions import Capability, require_capability
from src.seatledger.services.processor import PaymentProcessor
from src.seatledger.services.subscription_service import SubscriptionService

logger = logging.getLogger("uvicorn.error")

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="auth/token")


def get_processor(request: Request) -> PaymentProcessor:
    """The payment processor built once at start-up (see main.py)."""
    processor = getattr(request.app.state, "processor", None)
    if processor is None:
        logger.error("Payment processor is not configured on the application")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Payment processor unavailable",
        )
    return processor


def get_subscription_service(
    processor: PaymentProcessor = Depends(get_processor),
) -> SubscriptionService:
    return SubscriptionService(processor)


async def get_current_user(
    token: str = Depends(oauth2_scheme), db: Session = Depends(get_db)
) -> models.User:
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    payload = verify_token(token)
    if payload is None:
        raise credentials_exception

    email: str = payload.get("sub")
    if email is None:
        raise credentials_exception

    user = db.query(models.User).filter(models.User.email == email).first()
    if user is None:
        raise credentials_exception
    # Deactivated and removed members keep their row but lose access
    if not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Your account has been deactivated. Contact your organization admin.",
        )
    return user


def require(capability: Capability):
    """Dependency factory: the current user, if their role grants `capability`."""

    def checker(current_user: models.User = Depends(get_current_user)) -> models.User:
        require_capability(current_user.role, capability)
        return current_user

    return checker
