from fastapi import APIRouter

from app.modules.concession_applications import router as concession_applications_router

api_router = APIRouter()

api_router.include_router(
    concession_applications_router,
    prefix="/applications",
    tags=["Concession Applications"],
)
