from fastapi import APIRouter

from survey_lifecycle.api.v1 import surveys

api_router = APIRouter()

api_router.include_router(surveys.router)
