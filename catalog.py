import re
import unicodedata
from datetime import datetime, timezone
from typing import Optional

from pymongo.errors import DuplicateKeyError

import audit
from database import create_document, serialize, to_object_id
from errors import DuplicateSlug, NotFound
from schemas import Category, CategoryUpdate, Product, ProductType, ProductUpdate

PRODUCT_TYPES = {t.value for t in ProductType}


def slugify(text: str) -> str:
    """Lowercase, strip accents, hyphenate whitespace and drop anything else."""
    text = unicodedata.normalize("NFD", text.lower().strip())
    text = "".join(ch for ch in text if not unicodedata.combining(ch))
    text = re.sub(r"\s+", "-", text)
    return re.sub(r"[^a-z0-9-]", "", text)


def _with_categories(db, products: list) -> list:
    ids = {to_object_id(p["category_id"]) for p in products if p.get("category_id")}
    ids.discard(None)
    categories = {}
    if ids:
        categories = {str(c["_id"]): serialize(c) for c in db["category"].find({"_id": {"$in": list(ids)}})}
    out = []
    for p in products:
        p = serialize(p)
        p["category"] = categories.get(p.get("category_id"))
        out.append(p)
    return out


# ---------- Products ----------

def list_products(db, page: int = 1, page_size: int = 12, type: Optional[str] = None,
                  material: Optional[str] = None, category: Optional[str] = None,
                  min_price: Optional[float] = None, max_price: Optional[float] = None,
                  featured: bool = False) -> dict:
    page = max(1, page)
    page_size = max(1, page_size)
    query = {}
    if type and type in PRODUCT_TYPES:
        query["type"] = type
    if material:
        query["material"] = {"$regex": re.escape(material), "$options": "i"}
    if featured:
        query["is_featured"] = True
    if min_price is not None or max_price is not None:
        query["price"] = {}
        if min_price is not None:
            query["price"]["$gte"] = min_price
        if max_price is not None:
            query["price"]["$lte"] = max_price
    if category:
        cat = db["category"].find_one({"slug": category})
        if not cat:
            return {"items": [], "total": 0, "page": page, "pageSize": page_size}
        query["category_id"] = str(cat["_id"])

    cursor = db["product"].find(query).sort([("created_at", -1), ("_id", -1)]).skip((page - 1) * page_size).limit(page_size)
    return {
        "items": _with_categories(db, list(cursor)),
        "total": db["product"].count_documents(query),
        "page": page,
        "pageSize": page_size,
    }


def get_product(db, slug: str) -> dict:
    doc = db["product"].find_one({"slug": slug})
    if not doc:
        raise NotFound("Producto no encontrado")
    return _with_categories(db, [doc])[0]


def create_product(db, data: Product, admin: dict) -> dict:
    doc = data.model_dump(mode="json")
    try:
        product_id = create_document(db, "product", doc)
    except DuplicateKeyError:
        raise DuplicateSlug("Ya existe un producto con ese slug")
    audit.record(db, "PRODUCT_CREATE", user_id=str(admin["_id"]), entity="product", entity_id=product_id,
                 details={"slug": doc["slug"], "name": doc["name"]})
    return serialize(db["product"].find_one({"_id": to_object_id(product_id)}))


def update_product(db, slug: str, data: ProductUpdate, admin: dict) -> dict:
    existing = db["product"].find_one({"slug": slug})
    if not existing:
        raise NotFound("Producto no encontrado")
    changes = data.model_dump(mode="json", exclude_unset=True)
    if changes:
        changes["updated_at"] = datetime.now(timezone.utc)
        db["product"].update_one({"_id": existing["_id"]}, {"$set": changes})
    updated = db["product"].find_one({"_id": existing["_id"]})
    audit.record(db, "PRODUCT_UPDATE", user_id=str(admin["_id"]), entity="product", entity_id=str(existing["_id"]),
                 details={"slug": slug, "name": updated["name"]})
    return serialize(updated)


def delete_product(db, slug: str, admin: dict) -> None:
    existing = db["product"].find_one({"slug": slug})
    if not existing:
        raise NotFound("Producto no encontrado")
    db["product"].delete_one({"_id": existing["_id"]})
    audit.record(db, "PRODUCT_DELETE", user_id=str(admin["_id"]), entity="product", entity_id=str(existing["_id"]),
                 details={"name": existing["name"], "slug": existing["slug"]})


# ---------- Categories ----------

def list_categories(db, active_only: bool = True) -> list:
    query = {"is_active": True} if active_only else {}
    return [serialize(c) for c in db["category"].find(query).sort("name", 1)]


def create_category(db, data: Category, admin: dict) -> dict:
    if db["category"].find_one({"slug": data.slug}):
        raise DuplicateSlug("Ya existe una categoría con ese slug")
    try:
        category_id = create_document(db, "category", data)
    except DuplicateKeyError:
        raise DuplicateSlug("Ya existe una categoría con ese slug")
    audit.record(db, "CATEGORY_CREATE", user_id=str(admin["_id"]), entity="category", entity_id=category_id,
                 details={"name": data.name, "slug": data.slug})
    return serialize(db["category"].find_one({"_id": to_object_id(category_id)}))


def update_category(db, category_id: str, data: CategoryUpdate, admin: dict) -> dict:
    oid = to_object_id(category_id)
    existing = db["category"].find_one({"_id": oid}) if oid else None
    if not existing:
        raise NotFound("Categoría no encontrada")
    changes = data.model_dump(exclude_none=True)
    if "slug" in changes and db["category"].find_one({"slug": changes["slug"], "_id": {"$ne": oid}}):
        raise DuplicateSlug("Ya existe otra categoría con ese slug")
    if changes:
        changes["updated_at"] = datetime.now(timezone.utc)
        db["category"].update_one({"_id": oid}, {"$set": changes})
    category = db["category"].find_one({"_id": oid})
    audit.record(db, "CATEGORY_UPDATE", user_id=str(admin["_id"]), entity="category", entity_id=category_id,
                 details={"name": category["name"], "slug": category["slug"]})
    return serialize(category)
