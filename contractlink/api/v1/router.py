from fastapi import APIRouter

from contractlink.api.v1.auth import router as auth_router
from contractlink.api.v1.bids import router as bids_router
from contractlink.api.v1.contracts import router as contracts_router
from contractlink.api.v1.milestones import router as milestones_router
from contractlink.api.v1.projects import router as projects_router

v1_router = APIRouter()

v1_router.include_router(auth_router)
v1_router.include_router(projects_router)
v1_router.include_router(bids_router)
v1_router.include_router(contracts_router)
v1_router.include_router(milestones_router)
