"""Aggregate all v1 API routers."""

from fastapi import APIRouter
from jpeg2avif.api.v1.convert import router as convert_router
from jpeg2avif.api.v1.health import router as health_router

# Mounted at root: /convert, /status/{id}, /health
v1_router = APIRouter()
v1_router.include_router(health_router, tags=["health"])
v1_router.include_router(convert_router, tags=["convert"])
