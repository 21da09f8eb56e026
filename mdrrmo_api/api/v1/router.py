from fastapi import APIRouter
from mdrrmo_api.api.v1 import (
    auth,
    categories,
    inventory,
    batches,
    serialized_items,
    deployments,
    notifications,
    imports,
)

api_router = APIRouter()

api_router.include_router(auth.router, prefix="/auth", tags=["auth"])
api_router.include_router(categories.router, prefix="/categories", tags=["categories"])
api_router.include_router(inventory.router, prefix="/inventory", tags=["inventory"])
api_router.include_router(batches.router, prefix="/batches", tags=["batches"])
api_router.include_router(serialized_items.router, prefix="/serialized-items", tags=["serialized-items"])
api_router.include_router(deployments.router, prefix="/deployments", tags=["deployments"])
api_router.include_router(notifications.router, prefix="/notifications", tags=["notifications"])
api_router.include_router(imports.router, prefix="/import", tags=["import"])
