import pytest
from sqlalchemy import text

from vascatalog.db.session import load_json
from vascatalog.ingest.upsert import ProductUpsertEngine
from vascatalog.logic.best_offers import (
    BestOfferMaterializer,
    get_best_offer,
    list_best_offers,
    normalize_provider,
    select_best_offers,
)


@pytest.fixture()
def catalog(engine, flash_supplier, mobilemart_supplier, make_record):
    upsert = ProductUpsertEngine(engine)
    upsert.sync_one(make_record("F-MTN-10", commission=3.0), flash_supplier)
    upsert.sync_one(make_record("M-MTN-10", commission=5.0, provider="mtn"), mobilemart_supplier)
    upsert.sync_one(
        make_record("F-MTN-PICK", commission=4.0, min_amount=None, max_amount=None, denominations=[2000, 5000]),
        flash_supplier,
    )
    upsert.sync_one(
        make_record("F-CELLC-10", brand="Cell C", provider="cell c", commission=2.0),
        flash_supplier,
    )
    upsert.sync_one(
        make_record("F-MTN-OPEN", commission=9.0, min_amount=500, max_amount=100000, denominations=[]),
        flash_supplier,
    )
    with engine.begin() as conn:
        conn.execute(text("UPDATE product_variants SET price_type = 'variable' WHERE supplier_product_id = 'F-MTN-OPEN'"))
    return engine


def test_rebuild_picks_highest_commission_per_key(catalog):
    result = BestOfferMaterializer(catalog).rebuild()
    offers = {(o.vas_type, o.provider, o.denomination_cents): o for o in list_best_offers(catalog)}
    assert result.rows_affected == len(offers) == 4
    assert offers[("airtime", "MTN", 1000)].supplier_code == "MOBILEMART"
    assert offers[("airtime", "MTN", 1000)].commission == 5.0
    assert offers[("airtime", "MTN", 2000)].supplier_product_id == "F-MTN-PICK"
    assert ("airtime", "CellC", 1000) in offers
    assert all(o.supplier_product_id != "F-MTN-OPEN" for o in offers.values())


def test_no_active_variant_beats_a_published_offer(catalog):
    BestOfferMaterializer(catalog).rebuild()
    with catalog.connect() as conn:
        variants = conn.execute(
            text(
                """
                SELECT pv.provider, pv.vas_type, pv.commission, pv.denominations, pv.min_amount, pv.max_amount
                FROM product_variants pv WHERE pv.status = 'active' AND pv.price_type = 'fixed'
                """
            )
        ).mappings().all()
    for variant in variants:
        denominations = load_json(variant["denominations"], []) or [variant["min_amount"]]
        for denomination in denominations:
            offer = get_best_offer(catalog, variant["vas_type"], variant["provider"], denomination)
            assert offer is not None
            assert offer.commission >= float(variant["commission"])


def test_version_increases_and_audit_is_appended(catalog):
    materializer = BestOfferMaterializer(catalog, refreshed_by="test")
    first = materializer.rebuild()
    second = materializer.rebuild()
    assert second.catalog_version > first.catalog_version
    with catalog.connect() as conn:
        audit = conn.execute(
            text("SELECT refreshed_by, rows_affected, catalog_version FROM catalog_refresh_audit ORDER BY id")
        ).all()
        versions = {row[0] for row in conn.execute(text("SELECT DISTINCT catalog_version FROM vas_best_offers"))}
    assert [tuple(row) for row in audit] == [
        ("test", 4, first.catalog_version),
        ("test", 4, second.catalog_version),
    ]
    assert versions == {second.catalog_version}


def test_failed_rebuild_keeps_previous_table(catalog, monkeypatch, flash_supplier, make_record):
    materializer = BestOfferMaterializer(catalog)
    published = materializer.rebuild()
    before = [(o.provider, o.denomination_cents, o.product_variant_id) for o in list_best_offers(catalog)]

    ProductUpsertEngine(catalog).sync_one(make_record("F-MTN-99", commission=8.0), flash_supplier)

    def boom(*args, **kwargs):
        raise RuntimeError("audit insert failed")

    monkeypatch.setattr(materializer, "_write_audit", boom)
    with pytest.raises(RuntimeError):
        materializer.rebuild()

    after = list_best_offers(catalog)
    assert [(o.provider, o.denomination_cents, o.product_variant_id) for o in after] == before
    assert {o.catalog_version for o in after} == {published.catalog_version}
    with catalog.connect() as conn:
        assert conn.execute(text("SELECT COUNT(*) FROM catalog_refresh_audit")).scalar_one() == 1


def test_inactive_supplier_is_excluded(catalog):
    with catalog.begin() as conn:
        conn.execute(text("UPDATE suppliers SET is_active = :inactive WHERE code = 'MOBILEMART'"), {"inactive": False})
    BestOfferMaterializer(catalog).rebuild()
    offer = get_best_offer(catalog, "airtime", "MTN", 1000)
    assert offer.supplier_code == "FLASH"
    assert offer.commission == 3.0


def test_select_best_offers_first_seen_wins_ties():
    rows = [
        {
            "product_variant_id": 7, "product_id": 7, "supplier_id": 1, "supplier_code": "FLASH",
            "product_name": "MTN R10", "supplier_product_id": "a", "vas_type": "airtime", "provider": "MTN",
            "commission": 3, "denominations": "[]", "min_amount": 1000, "max_amount": 1000,
        },
        {
            "product_variant_id": 9, "product_id": 9, "supplier_id": 2, "supplier_code": "MOBILEMART",
            "product_name": "MTN R10", "supplier_product_id": "b", "vas_type": "airtime", "provider": "mtn",
            "commission": 3, "denominations": "[]", "min_amount": 1000, "max_amount": 1000,
        },
        {
            "product_variant_id": 11, "product_id": 11, "supplier_id": 2, "supplier_code": "MOBILEMART",
            "product_name": "MTN Open", "supplier_product_id": "c", "vas_type": "airtime", "provider": "MTN",
            "commission": 1, "denominations": "[]", "min_amount": 500, "max_amount": 9000,
        },
    ]
    offers = select_best_offers(rows)
    assert [(o.product_variant_id, o.denomination_cents) for o in offers] == [(7, 1000)]


def test_normalize_provider():
    assert normalize_provider(" Cell C ") == "CellC"
    assert normalize_provider("global-data") == "Global"
    assert normalize_provider("Hollywoodbets") == "Hollywoodbets"
    assert normalize_provider("hollywoodbets ") == "Hollywoodbets"
    assert normalize_provider("DSTV") == "DStv"
    assert normalize_provider("Cell-C") == "CellC"
    assert normalize_provider(None) == "Unknown"


def test_provider_spelling_differences_share_one_offer(engine, flash_supplier, mobilemart_supplier, make_record):
    upsert = ProductUpsertEngine(engine)
    betting = dict(brand="Hollywoodbets", product_type="voucher", min_amount=5000, max_amount=5000, denominations=[5000])
    upsert.sync_one(make_record("F-HWB-50", provider="Hollywoodbets", commission=2.0, **betting), flash_supplier)
    upsert.sync_one(make_record("M-HWB-50", provider="hollywoodbets", commission=3.5, **betting), mobilemart_supplier)

    BestOfferMaterializer(engine).rebuild()

    (offer,) = list_best_offers(engine)
    assert (offer.provider, offer.supplier_code, offer.commission) == ("Hollywoodbets", "MOBILEMART", 3.5)
    assert get_best_offer(engine, "voucher", "HOLLYWOODBETS", 5000).product_variant_id == offer.product_variant_id
