"""Print the cross-supplier comparison for one VAS type: ``compare_offers.py voucher [amount_cents] [provider]``."""

from __future__ import annotations

import sys

from dotenv import load_dotenv

from vascatalog.db.session import create_engine_from_env
from vascatalog.ingest import load_supplier_settings, supplier_priority
from vascatalog.logic.comparison import ComparisonService


def main() -> None:
    load_dotenv()
    if len(sys.argv) < 2:
        raise SystemExit("usage: compare_offers.py VAS_TYPE [AMOUNT_CENTS] [PROVIDER]")
    vas_type = sys.argv[1]
    amount = int(sys.argv[2]) if len(sys.argv) > 2 else None
    provider = sys.argv[3] if len(sys.argv) > 3 else None
    service = ComparisonService(create_engine_from_env(), supplier_priority(load_supplier_settings()))
    comparison = service.compare(vas_type, amount=amount, provider=provider)
    for deal in comparison.best_deals:
        print(f"{deal.supplier_code:<12} {deal.commission:>6.2f}%  {deal.product_name}")
    for rec in comparison.recommendations:
        print(f"[{rec.type}] {rec.description}: {rec.reason}")


if __name__ == "__main__":
    main()
