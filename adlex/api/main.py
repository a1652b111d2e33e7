from fastapi import APIRouter

from adlex.api.routes import checks

api_router = APIRouter()
api_router.include_router(checks.router)
