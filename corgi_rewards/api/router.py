from fastapi import APIRouter

from corgi_rewards.api.v1.endpoints import bank, rewards


api_router = APIRouter()

# Include endpoint routers
api_router.include_router(
    rewards.router,
    prefix="/rewards",
    tags=["Rewards"],
)

api_router.include_router(
    bank.router,
    prefix="/bank",
    tags=["Bank"],
)
