"""SQLAlchemy models."""

from atelier.models.material import Material, QuantityType
from atelier.models.product import (
    ProductType,
    ReadyProduct,
    SubcontractClient,
    SubcontractProduct,
)
from atelier.models.material_requirement import ProductMaterial, SubcontractProductMaterial
from atelier.models.stock import (
    LedgerReason,
    MovementDirection,
    PRODUCTION_OUT_REASONS,
    StockTransaction,
)
from atelier.models.batch import (
    BatchMaterialUsage,
    BatchStatus,
    BatchStatusHistory,
    DeductionMode,
    ProductionBatch,
)
from atelier.models.leftover import BatchLeftover

__all__ = [
    "Material",
    "QuantityType",
    "ProductType",
    "ReadyProduct",
    "SubcontractClient",
    "SubcontractProduct",
    "ProductMaterial",
    "SubcontractProductMaterial",
    "LedgerReason",
    "MovementDirection",
    "PRODUCTION_OUT_REASONS",
    "StockTransaction",
    "BatchMaterialUsage",
    "BatchStatus",
    "BatchStatusHistory",
    "DeductionMode",
    "ProductionBatch",
    "BatchLeftover",
]
