from fastapi import APIRouter

from src.seatledger.api.endpoints import (
    auth,
    organizations,
    plans,
    subscription,
    users,
)

api_router = APIRouter()
api_router.include_router(auth.router)
api_router.include_router(plans.router)
api_router.include_router(users.router)
api_router.include_router(organizations.router)
api_router.include_router(subscription.router)
