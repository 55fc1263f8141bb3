"""Domain exceptions and their HTTP mapping.

Services raise these; routes let them propagate and the handlers registered
by ``register_exception_handlers`` turn them into the standard
``{"success": false, "message": ...}`` envelope.
"""

import logging
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class ProductionError(Exception):
    """Base class for every error raised by the production core."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str, **details: Any):
        self.message = message
        self.details = details
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"success": False, "message": self.message}
        body.update(self.details)
        return body


class ValidationError(ProductionError):
    """Missing or invalid input."""

    status_code = status.HTTP_400_BAD_REQUEST


class MaterialsNotConfiguredError(ValidationError):
    """Raised when a product has no usable material configuration."""

    def __init__(self, product_id: int, product_type: str = "regular"):
        self.product_id = product_id
        self.product_type = product_type
        super().__init__(
            f"No materials configured for product {product_id}",
            product_id=product_id,
            product_type=product_type,
        )


class InvalidStatusTransitionError(ValidationError):
    """Raised when a batch is asked to move to a status it cannot reach."""

    def __init__(self, batch_id: int, current: str, requested: str):
        self.batch_id = batch_id
        self.current = current
        self.requested = requested
        super().__init__(
            f"Batch {batch_id} cannot move from '{current}' to '{requested}'",
            batch_id=batch_id,
            current_status=current,
            requested_status=requested,
        )


class DeductionModeConflictError(ValidationError):
    """Raised when a second deduction path is requested for the same batch."""

    def __init__(self, batch_id: int, existing_mode: str, requested_mode: str):
        self.batch_id = batch_id
        self.existing_mode = existing_mode
        self.requested_mode = requested_mode
        super().__init__(
            f"Stock for batch {batch_id} was already deducted ({existing_mode}); "
            f"refusing {requested_mode} deduction",
            batch_id=batch_id,
            deduction_mode=existing_mode,
        )


class InsufficientStockError(ProductionError):
    """Raised when there's not enough stock for a deduction.

    ``material_id``, ``required`` and ``available`` describe the first short
    material; ``shortages`` lists every short material when the caller
    validated a whole set before mutating anything.
    """

    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(
        self,
        material_id: int,
        material_name: str,
        required: float,
        available: float,
        shortages: Optional[List[Dict[str, Any]]] = None,
    ):
        self.material_id = material_id
        self.material_name = material_name
        self.required = required
        self.available = available
        self.shortages = shortages or [
            {
                "material_id": material_id,
                "material_name": material_name,
                "required": required,
                "available": available,
            }
        ]
        super().__init__(
            f"Insufficient stock for '{material_name}': need {required}, have {available}",
            material_id=material_id,
            material_name=material_name,
            required=required,
            available=available,
            shortages=self.shortages,
        )


class NotFoundError(ProductionError):
    """Raised when a batch, product, material or leftover does not exist."""

    status_code = status.HTTP_404_NOT_FOUND

    def __init__(self, entity: str, identifier: Any):
        self.entity = entity
        self.identifier = identifier
        super().__init__(f"{entity} {identifier} not found")


class PersistenceError(ProductionError):
    """Raised when the underlying transaction fails."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR


class DuplicateConfigurationWarning(UserWarning):
    """Duplicate (material, size) configuration row ignored during calculation."""


async def _production_error_handler(request: Request, exc: ProductionError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=jsonable_encoder(exc.to_dict()))


async def _request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={
            "success": False,
            "message": "Invalid request data",
            "errors": jsonable_encoder(exc.errors()),
        },
    )


async def _unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error(
        f"Unhandled error on {request.method} {request.url.path}: {exc}",
        exc_info=exc,
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"success": False, "message": "Internal server error"},
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Attach the domain error handlers to the application."""
    app.add_exception_handler(ProductionError, _production_error_handler)
    app.add_exception_handler(RequestValidationError, _request_validation_handler)
    app.add_exception_handler(Exception, _unhandled_error_handler)
