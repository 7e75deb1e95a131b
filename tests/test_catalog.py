import pytest

import catalog
from conftest import make_category, make_product


@pytest.mark.parametrize("text, slug", [
    ("Cadena Oro 18K", "cadena-oro-18k"),
    ("  Anillo   Compromiso ", "anillo-compromiso"),
    ("Piñata Ñandú", "pinata-nandu"),
    ("Dije ¡Corazón! #1", "dije-corazon-1"),
])
def test_slugify(text, slug):
    assert catalog.slugify(text) == slug


def product_body(**overrides):
    body = {
        "name": "Pulsera Eslabón",
        "slug": "pulsera-eslabon",
        "description": "Pulsera de eslabones en oro amarillo.",
        "price": 1250000,
        "material": "Oro 18K",
        "type": "BRACELET",
        "images": ["https://ejemplo.com/pulsera.jpg"],
        "stock": 4,
        "isFeatured": True,
    }
    body.update(overrides)
    return body


@pytest.fixture
def shelf(db):
    chains = make_category(db, slug="cadenas", name="Cadenas")
    rings = make_category(db, slug="anillos", name="Anillos")
    make_product(db, slug="cadena-oro", price=760000.0, material="Oro 18K", category_id=str(chains["_id"]), is_featured=True)
    make_product(db, slug="cadena-plata", price=120000.0, material="Plata 925", category_id=str(chains["_id"]))
    make_product(db, slug="anillo-oro", type="RING", price=450000.0, material="oro blanco", category_id=str(rings["_id"]))
    return {"chains": chains, "rings": rings}


def slugs(result):
    return sorted(p["slug"] for p in result["items"])


def test_list_products_filters(db, shelf):
    assert slugs(catalog.list_products(db, type="RING")) == ["anillo-oro"]
    assert slugs(catalog.list_products(db, material="ORO")) == ["anillo-oro", "cadena-oro"]
    assert slugs(catalog.list_products(db, featured=True)) == ["cadena-oro"]
    assert slugs(catalog.list_products(db, min_price=200000, max_price=500000)) == ["anillo-oro"]
    assert slugs(catalog.list_products(db, category="cadenas")) == ["cadena-oro", "cadena-plata"]


def test_unknown_category_is_empty(db, shelf):
    assert catalog.list_products(db, category="no-existe") == {"items": [], "total": 0, "page": 1, "pageSize": 12}


def test_material_filter_is_literal(db, shelf):
    assert catalog.list_products(db, material="Oro.*")["total"] == 0


def test_list_products_paginates(db, shelf):
    first = catalog.list_products(db, page=1, page_size=2)
    second = catalog.list_products(db, page=2, page_size=2)
    assert first["total"] == 3
    assert len(first["items"]) == 2
    assert len(second["items"]) == 1
    assert not set(slugs(first)) & set(slugs(second))


def test_products_carry_their_category(client, shelf):
    res = client.get("/api/products/cadena-oro")
    assert res.status_code == 200
    assert res.json()["category"]["slug"] == "cadenas"
    assert client.get("/api/products?featured=true").json()["total"] == 1


def test_missing_product_is_404(client):
    res = client.get("/api/products/no-existe")
    assert res.status_code == 404
    assert res.json()["code"] == "NOT_FOUND"


def test_admin_creates_product(admin_client, db):
    res = admin_client.post("/api/products", json=product_body())
    assert res.status_code == 201
    assert res.json()["is_featured"] is True
    assert db["product"].find_one({"slug": "pulsera-eslabon"})["images"] == ["https://ejemplo.com/pulsera.jpg"]
    assert db["auditlog"].find_one({"action": "PRODUCT_CREATE"})["details"]["slug"] == "pulsera-eslabon"


def test_duplicate_product_slug(admin_client, db):
    make_product(db, slug="pulsera-eslabon")
    res = admin_client.post("/api/products", json=product_body())
    assert res.status_code == 400
    assert res.json()["code"] == "DUPLICATE_SLUG"


@pytest.mark.parametrize("overrides", [{"price": 0}, {"images": []}, {"images": ["no-url"]}, {"type": "NECKLACE"}])
def test_invalid_product_body(admin_client, overrides):
    assert admin_client.post("/api/products", json=product_body(**overrides)).status_code == 422


def test_product_writes_require_admin(client, db):
    assert client.post("/api/products", json=product_body()).status_code == 401
    assert db["product"].count_documents({}) == 0


def test_update_and_delete_product(admin_client, db):
    product = make_product(db, stock=5)

    res = admin_client.patch(f"/api/products/{product['slug']}", json={"stock": 9, "isFeatured": True})
    assert res.status_code == 200
    stored = db["product"].find_one({"_id": product["_id"]})
    assert stored["stock"] == 9
    assert stored["is_featured"] is True
    assert stored["price"] == product["price"]

    assert admin_client.delete(f"/api/products/{product['slug']}").json() == {"ok": True}
    assert db["product"].count_documents({}) == 0
    actions = [log["action"] for log in db["auditlog"].find({})]
    assert actions == ["PRODUCT_UPDATE", "PRODUCT_DELETE"]
    assert admin_client.delete(f"/api/products/{product['slug']}").status_code == 404


def test_public_categories_are_active_only(client, db):
    make_category(db, slug="cadenas", name="Cadenas")
    make_category(db, slug="archivo", name="Archivo", is_active=False)
    res = client.get("/api/categories")
    assert [c["slug"] for c in res.json()["items"]] == ["cadenas"]


def test_admin_categories(admin_client, db):
    make_category(db, slug="archivo", name="Archivo", is_active=False)

    res = admin_client.post("/api/admin/categories", json={"name": "Dijes", "slug": "dijes"})
    assert res.status_code == 200
    category_id = res.json()["id"]
    assert [c["slug"] for c in admin_client.get("/api/admin/categories").json()["items"]] == ["archivo", "dijes"]

    res = admin_client.post("/api/admin/categories", json={"name": "Otra", "slug": "dijes"})
    assert res.json()["code"] == "DUPLICATE_SLUG"

    res = admin_client.patch(f"/api/admin/categories/{category_id}", json={"slug": "archivo"})
    assert res.status_code == 400
    res = admin_client.patch(f"/api/admin/categories/{category_id}", json={"isActive": False, "name": "Dijes finos"})
    assert res.json()["is_active"] is False
    assert res.json()["name"] == "Dijes finos"

    actions = [log["action"] for log in db["auditlog"].find({})]
    assert actions == ["CATEGORY_CREATE", "CATEGORY_UPDATE"]


def test_category_slug_format(admin_client):
    assert admin_client.post("/api/admin/categories", json={"name": "Mal", "slug": "Con Espacios"}).status_code == 422


def test_update_unknown_category(admin_client):
    assert admin_client.patch("/api/admin/categories/nope", json={"name": "X"}).status_code == 404


def test_root_answers(client):
    assert client.get("/").json() == {"message": "Gold Legacy API is running"}
