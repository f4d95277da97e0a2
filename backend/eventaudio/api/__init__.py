# Router aggregator – import each route module here and expose ``api_router``
# for convenient inclusion in the FastAPI app.

from fastapi import APIRouter

from . import routes_engineer, routes_storage


api_router = APIRouter()
api_router.include_router(routes_engineer.router, prefix="/engineer", tags=["engineer"])
api_router.include_router(routes_storage.router, prefix="/storage", tags=["storage"])
