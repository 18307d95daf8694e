import pytest
from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    MetaData,
    Numeric,
    Table,
    Text,
    UniqueConstraint,
    create_engine,
)
from sqlalchemy.pool import StaticPool

from vascatalog.ingest.models import RawProductRecord, Supplier

metadata = MetaData()

suppliers = Table(
    "suppliers",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("code", Text, nullable=False, unique=True),
    Column("name", Text, nullable=False),
    Column("is_active", Boolean, nullable=False, default=True),
)

product_brands = Table(
    "product_brands",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", Text, nullable=False),
    Column("normalized_name", Text, nullable=False, unique=True),
    Column("category", Text, nullable=False, server_default="other"),
    Column("is_active", Boolean, nullable=False, default=True),
    Column("created_at", DateTime),
    Column("updated_at", DateTime),
)

products = Table(
    "products",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("supplier_id", Integer, ForeignKey("suppliers.id"), nullable=False),
    Column("brand_id", Integer, ForeignKey("product_brands.id"), nullable=False),
    Column("supplier_product_id", Text, nullable=False),
    Column("name", Text, nullable=False),
    Column("type", Text, nullable=False),
    Column("status", Text, nullable=False, server_default="active"),
    Column("created_at", DateTime),
    Column("updated_at", DateTime),
    UniqueConstraint("supplier_id", "supplier_product_id"),
)

product_variants = Table(
    "product_variants",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("product_id", Integer, ForeignKey("products.id"), nullable=False),
    Column("supplier_id", Integer, ForeignKey("suppliers.id"), nullable=False),
    Column("supplier_product_id", Text, nullable=False),
    Column("vas_type", Text, nullable=False),
    Column("provider", Text, nullable=False),
    Column("price_type", Text, nullable=False, server_default="fixed"),
    Column("price_type_override", Text),
    Column("suppressed", Boolean, nullable=False, server_default="0"),
    Column("min_amount", Integer),
    Column("max_amount", Integer),
    Column("denominations", JSON),
    Column("commission", Numeric(5, 2)),
    Column("is_promotional", Boolean, server_default="0"),
    Column("promotional_discount", Numeric(5, 2)),
    Column("constraints", JSON),
    Column("metadata", JSON),
    Column("status", Text, nullable=False, server_default="active"),
    Column("last_synced_at", DateTime),
    Column("created_at", DateTime),
    Column("updated_at", DateTime),
    UniqueConstraint("product_id", "supplier_id", "supplier_product_id"),
)

vas_best_offers = Table(
    "vas_best_offers",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("vas_type", Text, nullable=False),
    Column("provider", Text, nullable=False),
    Column("denomination_cents", Integer, nullable=False),
    Column("product_variant_id", Integer, ForeignKey("product_variants.id"), nullable=False),
    Column("product_id", Integer),
    Column("supplier_id", Integer),
    Column("supplier_code", Text),
    Column("product_name", Text),
    Column("supplier_product_id", Text),
    Column("commission", Numeric(5, 2)),
    Column("denominations", JSON),
    Column("min_amount", Integer),
    Column("max_amount", Integer),
    Column("catalog_version", BigInteger, nullable=False),
    Column("created_at", DateTime),
    UniqueConstraint("vas_type", "provider", "denomination_cents"),
)

catalog_refresh_audit = Table(
    "catalog_refresh_audit",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("refreshed_at", DateTime),
    Column("refreshed_by", Text),
    Column("vas_type", Text),
    Column("rows_affected", Integer),
    Column("catalog_version", BigInteger),
)


@pytest.fixture()
def engine():
    engine = create_engine(
        "sqlite://",
        future=True,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    metadata.create_all(engine)
    with engine.begin() as conn:
        conn.execute(suppliers.insert(), [
            {"id": 1, "code": "FLASH", "name": "Flash", "is_active": True},
            {"id": 2, "code": "MOBILEMART", "name": "MobileMart", "is_active": True},
        ])
    yield engine
    engine.dispose()


@pytest.fixture()
def flash_supplier():
    return Supplier(id=1, code="FLASH", name="Flash")


@pytest.fixture()
def mobilemart_supplier():
    return Supplier(id=2, code="MOBILEMART", name="MobileMart")


@pytest.fixture()
def make_record():
    def factory(supplier_product_id: str, **overrides) -> RawProductRecord:
        values = {
            "supplier_product_id": supplier_product_id,
            "name": f"MTN Airtime {supplier_product_id}",
            "brand": "MTN",
            "product_type": "airtime",
            "provider": "MTN",
            "min_amount": 1000,
            "max_amount": 1000,
            "denominations": [1000],
            "commission": 3.0,
        }
        values.update(overrides)
        return RawProductRecord(**values)

    return factory
