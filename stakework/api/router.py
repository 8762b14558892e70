"""Mount all API routes."""

from fastapi import APIRouter

from stakework.api.admin import router as admin_router
from stakework.api.events import router as events_router
from stakework.api.ledger import router as ledger_router
from stakework.api.tasks import router as tasks_router
from stakework.api.users import router as users_router

api_router = APIRouter()
api_router.include_router(users_router, tags=["users"])
api_router.include_router(tasks_router, tags=["tasks"])
api_router.include_router(ledger_router, tags=["ledger"])
api_router.include_router(events_router, tags=["events"])
api_router.include_router(admin_router, tags=["admin"])
