from fastapi import APIRouter
from contact_segments.api.v2 import segments

api_router = APIRouter()

api_router.include_router(segments.router, prefix="/segments", tags=["segments"])
