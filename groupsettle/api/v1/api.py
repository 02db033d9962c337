from fastapi import APIRouter
from groupsettle.api.v1.endpoints import groups, ledger, settlements

api_router = APIRouter()

api_router.include_router(groups.router, prefix="/groups", tags=["groups"])
api_router.include_router(ledger.router, prefix="/groups", tags=["ledger"])
api_router.include_router(settlements.router, prefix="/groups", tags=["settlements"])
