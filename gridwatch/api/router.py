from fastapi import APIRouter

from gridwatch.api.routes import auth, measurements, pmus, polling

api_router = APIRouter(prefix="/api/v1")
api_router.include_router(auth.router, tags=["auth"])
api_router.include_router(pmus.router, tags=["pmus"])
api_router.include_router(measurements.router, tags=["measurements"])
api_router.include_router(polling.router, tags=["polling"])
