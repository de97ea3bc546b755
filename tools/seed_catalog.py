from __future__ import annotations

import sys
from pathlib import Path

from storefront.catalog import load_seed_products, seed_products
from storefront.config import settings
from storefront.db import Base, SessionLocal, engine
from storefront.logging import configure_logging

# default seed file, overridable as the first argument
DATA_FILE = Path(__file__).resolve().parents[1] / "data" / "products.json"


def main() -> None:
    configure_logging(settings.log_level, settings.log_json)

    path = Path(sys.argv[1]) if len(sys.argv) > 1 else DATA_FILE
    products = load_seed_products(path)
    if not products:
        raise SystemExit(f"No products found in {path}")

    Base.metadata.create_all(bind=engine)

    db = SessionLocal()
    try:
        made = seed_products(db, products)
    finally:
        db.close()

    for p in products:
        print(f"OK  {p.get('sku') or '-'}  {p['name']}  {p['price']:.2f}")

    print(f"\nDone. Added {made} of {len(products)} products to: {engine.url}")


if __name__ == "__main__":
    main()
