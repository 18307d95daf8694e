"""Seed the suppliers table from the supplier registry."""

from __future__ import annotations

from dotenv import load_dotenv
from sqlalchemy import text

from vascatalog.db.session import create_engine_from_env
from vascatalog.ingest import load_supplier_settings


def main() -> None:
    load_dotenv()
    engine = create_engine_from_env()
    settings = load_supplier_settings()
    with engine.begin() as conn:
        for supplier in settings.values():
            conn.execute(
                text(
                    """
                    INSERT INTO suppliers (code, name, is_active)
                    VALUES (:code, :name, TRUE)
                    ON CONFLICT (code) DO UPDATE SET name = EXCLUDED.name
                    """
                ),
                {"code": supplier.code, "name": supplier.name},
            )
    print(f"Seeded {len(settings)} suppliers")


if __name__ == "__main__":
    main()
