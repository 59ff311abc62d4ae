from fastapi import APIRouter
from redzone.api.v2 import red_zone

api_router = APIRouter()

# Include all v2 routers
api_router.include_router(red_zone.router, prefix="/red-zone", tags=["red-zone"])
