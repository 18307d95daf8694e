"""Rebuild vas_best_offers outside the daily sweep."""

from __future__ import annotations

import logging

from dotenv import load_dotenv

from vascatalog.db.session import create_engine_from_env
from vascatalog.logic.best_offers import BestOfferMaterializer


def main() -> None:
    load_dotenv()
    logging.basicConfig(level=logging.INFO)
    engine = create_engine_from_env()
    result = BestOfferMaterializer(engine, refreshed_by="refresh-vas-best-offers").rebuild()
    print(f"Refreshed {result.rows_affected} best offers (catalog version {result.catalog_version})")


if __name__ == "__main__":
    main()
