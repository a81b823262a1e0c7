"""Store products, platform transactions and purchase outcomes."""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class ProductType(str, Enum):
    SUBSCRIPTION = "subscription"
    PACK_SMALL = "pack_small"
    PACK_MEDIUM = "pack_medium"
    PACK_LARGE = "pack_large"

    @property
    def is_pack(self) -> bool:
        return self is not ProductType.SUBSCRIPTION


class Product(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    product_id: str
    product_type: ProductType
    display_name: str
    display_price: str
    credits: int


class Catalog(BaseModel):
    products: list[Product]

    def get(self, product_type: ProductType) -> Optional[Product]:
        return next((p for p in self.products if p.product_type == product_type), None)


class PlatformTransaction(BaseModel):
    """One purchase record from the store, verified or not."""

    transaction_id: str
    product_id: str
    account_id: Optional[str] = None
    verified: bool = True
    purchase_date: Optional[datetime] = None
    revocation_date: Optional[datetime] = None
    expiration_date: Optional[datetime] = None


class PlatformPurchaseStatus(str, Enum):
    SUCCESS = "success"
    PENDING = "pending"
    CANCELLED = "cancelled"


class PlatformPurchaseResult(BaseModel):
    status: PlatformPurchaseStatus
    transaction: Optional[PlatformTransaction] = None
    redirect_url: Optional[str] = None


class PurchaseStatus(str, Enum):
    SUCCESS = "success"
    PENDING = "pending"
    CANCELLED = "cancelled"
    UNVERIFIED = "unverified"


class PurchaseOutcome(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    status: PurchaseStatus
    message: Optional[str] = None
    redirect_url: Optional[str] = None
    credits: int = 0


class PurchaseRequest(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    product_type: ProductType


class StoreProduct(BaseModel):
    """Product as described by the store, before it is mapped to a ProductType."""

    product_id: str
    display_name: str
    display_price: str
    price_id: Optional[str] = None
