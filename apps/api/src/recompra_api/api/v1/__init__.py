from fastapi import APIRouter

from .endpoints import cashback, health, point_of_interaction

router = APIRouter()
router.include_router(health.router, tags=["Health"])
router.include_router(point_of_interaction.router)
router.include_router(cashback.router)
