from fastapi import APIRouter

from . import monitoring

api_router = APIRouter()
api_router.include_router(monitoring.router)
