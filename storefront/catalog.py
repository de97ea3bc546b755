# storefront/catalog.py
from __future__ import annotations

import json
from pathlib import Path
from typing import Any, List

from sqlalchemy.orm import Session

from .errors import ProductNotFoundError, ValidationError
from .models import Product

DATA_DIR = Path(__file__).resolve().parent.parent / "data"


def list_products(db: Session) -> List[Product]:
    return db.query(Product).order_by(Product.name.asc()).all()


def get_product(db: Session, product_id: int) -> Product:
    p = db.get(Product, product_id)
    if not p:
        raise ProductNotFoundError(product_id)
    return p


def load_seed_products(path: Path | None = None) -> list[dict[str, Any]]:
    """Read catalog seed data. Entries without a name or price are skipped."""
    seed_path = path or DATA_DIR / "products.json"
    if not seed_path.exists():
        raise FileNotFoundError(f"Seed file not found: {seed_path}")

    try:
        raw = json.loads(seed_path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise ValidationError(f"Invalid JSON in {seed_path}: {e}") from e

    out: list[dict[str, Any]] = []
    for p in raw if isinstance(raw, list) else []:
        if not isinstance(p, dict):
            continue
        name = str(p.get("name") or "").strip()
        if not name or p.get("price") is None:
            continue
        out.append(
            {
                "name": name,
                "description": p.get("description"),
                "price": round(float(p["price"]), 2),
                "stock_quantity": int(p.get("stock_quantity") or 0),
                "sku": p.get("sku"),
                "image_url": p.get("image_url"),
            }
        )
    return out


def seed_products(db: Session, products: list[dict[str, Any]]) -> int:
    """Insert products whose SKU is not already present. Returns rows added."""
    existing = {sku for (sku,) in db.query(Product.sku).filter(Product.sku.isnot(None))}
    made = 0
    for p in products:
        if p.get("sku") and p["sku"] in existing:
            continue
        db.add(Product(**p))
        made += 1
    db.commit()
    return made
