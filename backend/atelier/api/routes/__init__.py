"""API routes."""

from fastapi import APIRouter

from atelier.api.routes import (
    leftovers,
    materials,
    production_batches,
    products,
    stock_deduction,
)

api_router = APIRouter()

api_router.include_router(materials.router, prefix="/materials", tags=["materials"])
api_router.include_router(products.router, prefix="/products", tags=["products"])
api_router.include_router(
    production_batches.router, prefix="/production-batches", tags=["production-batches"]
)
api_router.include_router(stock_deduction.router, prefix="/stock-deduction", tags=["stock-deduction"])
api_router.include_router(leftovers.router, prefix="/leftovers", tags=["leftovers"])
