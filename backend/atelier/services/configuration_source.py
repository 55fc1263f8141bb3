"""Material configuration sources for regular and sub-contracted products.

Both product catalogs keep their material configuration in parallel tables
with identical shape. A batch resolves its source once from its
``product_type`` and uses it for every configuration read and write.
"""

import logging
from typing import Any, Dict, Iterable, List, Type, Union

from sqlalchemy.orm import Session

from atelier.core.config import settings
from atelier.core.exceptions import MaterialsNotConfiguredError, NotFoundError, ValidationError
from atelier.models.material import Material
from atelier.models.material_requirement import ProductMaterial, SubcontractProductMaterial
from atelier.models.product import ProductType, ReadyProduct, SubcontractProduct
from atelier.services.requirement_calculator import normalize_size, size_key

logger = logging.getLogger(__name__)

Product = Union[ReadyProduct, SubcontractProduct]


class MaterialConfigurationSource:
    """Reads and writes one product catalog's material configuration."""

    product_type: ProductType
    product_model: Type[Any]
    requirement_model: Type[Any]

    def __init__(self, db: Session):
        self.db = db

    @property
    def reference_prefix(self) -> str:
        raise NotImplementedError

    def get_product(self, product_id: int) -> Product:
        product = self.db.get(self.product_model, product_id)
        if product is None:
            raise NotFoundError(self._label, product_id)
        return product

    def requirements(self, product_id: int) -> List[Any]:
        """Configuration rows for a product in insertion order."""
        return (
            self.db.query(self.requirement_model)
            .filter(self.requirement_model.product_id == product_id)
            .order_by(self.requirement_model.id)
            .all()
        )

    def ensure_configured(self, product: Product) -> List[Any]:
        """Return the product's rows, refusing products without configuration."""
        rows = self.requirements(product.id)
        if not product.materials_configured or not rows:
            raise MaterialsNotConfiguredError(product.id, self.product_type.value)
        return rows

    def mark_in_production(self, product: Product) -> None:
        product.is_in_production = True

    def release_from_production(self, product: Product) -> None:
        product.is_in_production = False

    def replace_requirements(self, product: Product, rows: Iterable[Dict[str, Any]]) -> List[Any]:
        """Replace the product's configuration with ``rows``.

        Rows sharing a (material, size) key are rejected rather than stored.
        Does not commit.
        """
        rows = list(rows)
        keys = set()
        material_ids = set()
        for row in rows:
            key = (row["material_id"], size_key(row.get("size_specific")))
            if key in keys:
                raise ValidationError(
                    f"Material {row['material_id']} is configured twice for size {key[1]}",
                    material_id=row["material_id"],
                    size=key[1],
                )
            keys.add(key)
            material_ids.add(row["material_id"])

        if material_ids:
            found = {
                m_id
                for (m_id,) in self.db.query(Material.id).filter(Material.id.in_(material_ids))
            }
            missing = sorted(material_ids - found)
            if missing:
                raise NotFoundError("Material", missing[0])

        self.db.query(self.requirement_model).filter(
            self.requirement_model.product_id == product.id
        ).delete(synchronize_session="fetch")
        self.db.flush()
        self.db.expire(product, ["materials"])

        created = []
        for row in rows:
            requirement = self.requirement_model(
                product_id=product.id,
                material_id=row["material_id"],
                quantity_needed=row["quantity_needed"],
                quantity_type_id=row.get("quantity_type_id"),
                size_specific=normalize_size(row.get("size_specific")),
                notes=row.get("notes"),
            )
            self.db.add(requirement)
            created.append(requirement)

        product.materials_configured = bool(created)
        self.db.flush()
        logger.info(
            f"Configured {len(created)} material row(s) for {self.product_type.value} "
            f"product {product.id}"
        )
        return created

    @property
    def _label(self) -> str:
        return "Product"


class RegularConfigurationSource(MaterialConfigurationSource):
    product_type = ProductType.REGULAR
    product_model = ReadyProduct
    requirement_model = ProductMaterial

    @property
    def reference_prefix(self) -> str:
        return settings.batch_reference_prefix


class SubcontractConfigurationSource(MaterialConfigurationSource):
    product_type = ProductType.SUBCONTRACT
    product_model = SubcontractProduct
    requirement_model = SubcontractProductMaterial

    @property
    def reference_prefix(self) -> str:
        return settings.subcontract_reference_prefix

    @property
    def _label(self) -> str:
        return "Sub-contracted product"


_SOURCES = {
    ProductType.REGULAR: RegularConfigurationSource,
    ProductType.SUBCONTRACT: SubcontractConfigurationSource,
}


def configuration_source_for(db: Session, product_type: Union[str, ProductType]) -> MaterialConfigurationSource:
    """Resolve the configuration source for a product type."""
    try:
        kind = ProductType(product_type or ProductType.REGULAR.value)
    except ValueError:
        raise ValidationError(
            f"Unknown product type '{product_type}'", product_type=product_type
        ) from None
    return _SOURCES[kind](db)
