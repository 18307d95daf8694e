from sqlalchemy import text

from vascatalog.ingest.upsert import ProductUpsertEngine
from vascatalog.logic.classifier import (
    FIXED,
    RULES,
    VARIABLE,
    PriceClassifier,
    Rule,
    VariantShape,
    classify_variant,
    classify_with_rule,
    plan_group,
)


def shape(id=1, **kwargs) -> VariantShape:
    kwargs.setdefault("product_id", id)
    kwargs.setdefault("name", "MTN Airtime")
    return VariantShape(id=id, **kwargs)


def test_single_price_point_is_fixed():
    assert classify_with_rule(shape(min_amount=1000, max_amount=1000)) == (FIXED, "single_price_point")


def test_genuine_span_is_variable():
    assert classify_with_rule(shape(min_amount=1000, max_amount=50000)) == (VARIABLE, "genuine_span")


def test_denomination_picker_is_fixed_even_with_span():
    verdict = classify_with_rule(shape(min_amount=1000, max_amount=5000, denominations=[1000, 2000, 5000]))
    assert verdict == (FIXED, "denomination_picker")


def test_previous_variable_verdict_sticks():
    assert classify_with_rule(shape(price_type=VARIABLE, min_amount=1000, max_amount=1000)) == (
        VARIABLE,
        "already_variable",
    )


def test_operator_override_wins():
    assert classify_variant(shape(price_type=VARIABLE, price_type_override=FIXED)) == FIXED
    assert classify_variant(shape(price_type_override=VARIABLE, min_amount=1000, max_amount=1000)) == VARIABLE


def test_range_metadata_and_keywords():
    assert classify_with_rule(shape(constraints={"type": "range"}))[1] == "range_metadata"
    assert classify_with_rule(shape(name="Betway Open Amount"))[1] == "variable_keyword"
    assert classify_with_rule(shape(name="Netflix Premium"))[0] == FIXED


def test_rule_order_is_inspectable():
    names = [rule.name for rule in RULES]
    assert names.index("denomination_picker") < names.index("single_price_point") < names.index("genuine_span")


def test_failing_rule_defaults_to_fixed():
    def broken(_):
        raise TypeError("bad shape")

    rules = (Rule("broken", broken, VARIABLE),) + RULES
    assert classify_with_rule(shape(min_amount=1000, max_amount=50000), rules) == (FIXED, "error")


def test_classification_is_deterministic():
    variant = shape(min_amount=1000, max_amount=50000)
    assert {classify_variant(variant) for _ in range(5)} == {VARIABLE}


def _group():
    return [
        shape(1, name="MTN Airtime", min_amount=500, max_amount=100000),
        shape(2, name="MTN R10", min_amount=1000, max_amount=1000, denominations=[1000]),
        shape(3, name="MTN R20", min_amount=2000, max_amount=2000, denominations=[2000]),
        shape(4, name="MTN R50", min_amount=5000, max_amount=5000, denominations=[5000]),
    ]


def test_plan_group_suppresses_fixed_when_variable_present():
    plan = plan_group("airtime", "MTN", _group())
    assert plan.has_variable
    changes = {c.variant_id: c for c in plan.changes}
    assert (changes[1].price_type, changes[1].status) == (VARIABLE, "active")
    assert [changes[i].status for i in (2, 3, 4)] == ["inactive"] * 3
    assert all(changes[i].suppressed for i in (2, 3, 4))


def test_plan_group_exempts_electricity_and_subscriptions():
    for product_type, brand in (("electricity", "Eskom"), ("voucher", "Netflix")):
        plan = plan_group(product_type, brand, _group())
        assert plan.exempt
        assert all(change.status == "active" for change in plan.changes)


def test_plan_group_lifts_suppression_without_variable():
    variants = [shape(2, min_amount=1000, max_amount=1000, status="inactive", suppressed=True)]
    plan = plan_group("airtime", "MTN", variants)
    assert [(c.status, c.suppressed) for c in plan.changes] == [("active", False)]


def _seed_group(engine, supplier, make_record, product_type="airtime", brand="MTN"):
    upsert = ProductUpsertEngine(engine)
    records = [
        make_record("OPEN", name=f"{brand} Variable", min_amount=500, max_amount=100000, denominations=[]),
        make_record("R10", min_amount=1000, max_amount=1000, denominations=[1000]),
        make_record("R20", min_amount=2000, max_amount=2000, denominations=[2000]),
        make_record("R50", min_amount=5000, max_amount=5000, denominations=[5000]),
    ]
    groups = set()
    for record in records:
        record.product_type = product_type
        record.brand = brand
        outcome = upsert.sync_one(record, supplier)
        groups.add((outcome.brand_id, outcome.product_type))
    return groups


def _statuses(engine):
    with engine.connect() as conn:
        rows = conn.execute(
            text("SELECT supplier_product_id, status, price_type FROM product_variants ORDER BY id")
        ).all()
    return {row[0]: (row[1], row[2]) for row in rows}


def test_apply_suppresses_then_restores(engine, flash_supplier, make_record):
    groups = _seed_group(engine, flash_supplier, make_record)
    classifier = PriceClassifier(engine)

    stats = classifier.apply(groups)
    statuses = _statuses(engine)
    assert [sid for sid, (status, _) in statuses.items() if status == "active"] == ["OPEN"]
    assert statuses["OPEN"] == ("active", VARIABLE)
    assert stats.suppressed_variants == 3
    assert stats.deactivated_products == 3
    with engine.connect() as conn:
        assert conn.execute(text("SELECT COUNT(*) FROM products WHERE status = 'inactive'")).scalar_one() == 3

    with engine.begin() as conn:
        conn.execute(text("UPDATE product_variants SET price_type_override = 'fixed' WHERE supplier_product_id = 'OPEN'"))
    stats = classifier.apply(groups)
    assert all(status == "active" for status, _ in _statuses(engine).values())
    assert stats.restored_variants == 3
    assert stats.reactivated_products == 3


def test_apply_exempt_group_keeps_everything_visible(engine, flash_supplier, make_record):
    groups = _seed_group(engine, flash_supplier, make_record, product_type="electricity", brand="Eskom")
    stats = PriceClassifier(engine).apply(groups)
    statuses = _statuses(engine)
    assert all(status == "active" for status, _ in statuses.values())
    assert statuses["OPEN"][1] == VARIABLE
    assert stats.exempt_groups == 1


def test_apply_is_idempotent(engine, flash_supplier, make_record):
    groups = _seed_group(engine, flash_supplier, make_record)
    classifier = PriceClassifier(engine)
    classifier.apply(groups)
    before = _statuses(engine)
    stats = classifier.apply(groups)
    assert _statuses(engine) == before
    assert stats.suppressed_variants == 0
