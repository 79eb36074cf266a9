"""API v1 router."""
from fastapi import APIRouter

from dossier_migration.api.v1 import migration

api_router: APIRouter = APIRouter()
api_router.include_router(migration.router, tags=["migration"])
