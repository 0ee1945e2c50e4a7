"""
Catalog Store — read-only product/variant lookup.

The storefront catalog is owned elsewhere (admin product management); the
checkout path only needs an immutable snapshot of price, active flag and
per-variant stock. Snapshots are plain dataclasses so pricing never touches
ORM state.
"""

import uuid
from abc import ABC, abstractmethod
from collections.abc import Iterable
from dataclasses import dataclass, field
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from db.models import Product


@dataclass(frozen=True)
class VariantSnapshot:
    sku: str
    stock: int
    price_modifier: Decimal = Decimal("0")
    color: str | None = None
    size: str | None = None

    @property
    def label(self) -> str:
        parts = [p for p in (self.color, self.size) if p]
        return "/".join(parts)


@dataclass(frozen=True)
class ProductSnapshot:
    product_id: str
    title: str
    price: Decimal
    is_active: bool
    variants: tuple[VariantSnapshot, ...] = field(default_factory=tuple)
    image: str = ""

    def variant(self, sku: str) -> VariantSnapshot | None:
        return next((v for v in self.variants if v.sku == sku), None)


def snapshot_product(product: Product) -> ProductSnapshot:
    """Freeze an ORM product into a ProductSnapshot."""
    images = product.images or []
    return ProductSnapshot(
        product_id=str(product.product_id),
        title=product.title,
        price=Decimal(product.price),
        is_active=bool(product.is_active),
        image=images[0] if images else "",
        variants=tuple(
            VariantSnapshot(
                sku=v.sku,
                stock=v.stock,
                price_modifier=Decimal(v.price_modifier or 0),
                color=v.color,
                size=v.size,
            )
            for v in product.variants
        ),
    )


def _as_uuid(product_id) -> uuid.UUID | None:
    if isinstance(product_id, uuid.UUID):
        return product_id
    try:
        return uuid.UUID(str(product_id))
    except ValueError:
        return None


class CatalogStore(ABC):
    """Product lookup by identifier."""

    @abstractmethod
    async def get_product(self, product_id) -> ProductSnapshot | None:
        ...

    async def get_products(self, product_ids: Iterable) -> dict[str, ProductSnapshot]:
        """Batch lookup keyed by the id string as given. Missing ids are omitted."""
        found: dict[str, ProductSnapshot] = {}
        for pid in dict.fromkeys(str(p) for p in product_ids):
            snapshot = await self.get_product(pid)
            if snapshot is not None:
                found[pid] = snapshot
        return found


class SqlCatalogStore(CatalogStore):
    """Catalog lookups against the products/product_variants tables."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_product(self, product_id) -> ProductSnapshot | None:
        pid = _as_uuid(product_id)
        if pid is None:
            return None
        result = await self.db.execute(
            select(Product).where(Product.product_id == pid).execution_options(populate_existing=True)
        )
        product = result.scalar_one_or_none()
        return snapshot_product(product) if product else None

    async def get_products(self, product_ids: Iterable) -> dict[str, ProductSnapshot]:
        keyed = {str(p): _as_uuid(p) for p in product_ids}
        ids = [pid for pid in keyed.values() if pid is not None]
        if not ids:
            return {}
        result = await self.db.execute(
            select(Product).where(Product.product_id.in_(ids)).execution_options(populate_existing=True)
        )
        by_id = {p.product_id: snapshot_product(p) for p in result.scalars().all()}
        return {key: by_id[pid] for key, pid in keyed.items() if pid in by_id}

