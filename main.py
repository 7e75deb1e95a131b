import json
import logging
import os
from typing import Optional

from fastapi import Depends, FastAPI, File, HTTPException, Request, Response, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, RedirectResponse
from starlette.concurrency import run_in_threadpool

import audit
import auth
import bulk_import
import catalog
import orders
import payments
import reports
from auth import get_current_user, get_optional_user, require_admin
from database import create_document, db as default_db, ensure_indexes, get_db, serialize, to_object_id
from errors import NotFound, ShopError
from schemas import (
    Category,
    CategoryUpdate,
    LoginRequest,
    OrderCreate,
    OrderStatusChange,
    Product,
    ProductUpdate,
    RegisterRequest,
    UserAddress,
    UserUpdate,
)

APP_TITLE = "Gold Legacy API"
XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title=APP_TITLE)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.on_event("startup")
def create_indexes():
    if default_db is None:
        logger.warning("DATABASE_URL is not set; API will answer 503 on data routes")
        return
    try:
        ensure_indexes(default_db)
    except Exception:
        logger.exception("Could not create MongoDB indexes")


@app.exception_handler(ShopError)
async def shop_error_handler(request: Request, exc: ShopError):
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message, "code": exc.code})


def xlsx_response(content: bytes, filename: str) -> Response:
    return Response(
        content=content,
        media_type=XLSX_MEDIA_TYPE,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@app.get("/")
def read_root():
    return {"message": f"{APP_TITLE} is running"}


# ---------- Auth ----------
@app.post("/api/auth/register")
def register(payload: RegisterRequest, response: Response, db=Depends(get_db)):
    user = auth.register_user(db, payload.email, payload.password, payload.name)
    if user is None:
        raise HTTPException(status_code=409, detail="Ya existe una cuenta con este email")
    auth.set_session_cookie(response, auth.issue_session(str(user["_id"]), user["email"], user["role"]))
    return {"user": auth.public_user(user)}


@app.post("/api/auth/login")
def login(payload: LoginRequest, response: Response, db=Depends(get_db)):
    user = auth.authenticate(db, payload.email, payload.password)
    if user is None:
        raise HTTPException(status_code=401, detail="Credenciales inválidas")
    auth.set_session_cookie(response, auth.issue_session(str(user["_id"]), user["email"], user["role"]))
    return {"user": auth.public_user(user)}


@app.post("/api/auth/logout")
def logout(response: Response):
    auth.clear_session_cookie(response)
    return {"ok": True}


@app.get("/api/auth/me")
def me(user: dict = Depends(get_current_user)):
    return {"user": auth.public_user(user)}


def login_error(reason: str) -> RedirectResponse:
    return RedirectResponse(f"/iniciar-sesion?error={reason}", status_code=302)


@app.get("/api/auth/google")
def google_login(request: Request):
    if not auth.google_configured():
        return login_error("google_not_configured")
    state = auth.new_oauth_state()
    redirect_uri = str(request.url_for("google_callback"))
    res = RedirectResponse(auth.google_authorization_url(redirect_uri, state), status_code=302)
    res.set_cookie(auth.GOOGLE_STATE_COOKIE, state, max_age=60 * 10, httponly=True,
                   secure=auth.COOKIE_SECURE, samesite="lax", path="/")
    return res


@app.get("/api/auth/google/callback")
def google_callback(request: Request, code: Optional[str] = None, state: Optional[str] = None,
                    error: Optional[str] = None, db=Depends(get_db)):
    if error:
        return login_error("google_denied")
    if not auth.google_configured():
        return login_error("google_not_configured")
    if not code or not state:
        return login_error("invalid_callback")

    saved_state = request.cookies.get(auth.GOOGLE_STATE_COOKIE)
    if not saved_state or saved_state != state:
        res = login_error("invalid_state")
        res.delete_cookie(auth.GOOGLE_STATE_COOKIE, path="/")
        return res

    try:
        profile = auth.fetch_google_profile(code, str(request.url_for("google_callback")))
        user = auth.login_with_google(db, profile)
    except auth.OAuthError as exc:
        res = login_error(exc.reason)
        res.delete_cookie(auth.GOOGLE_STATE_COOKIE, path="/")
        return res

    res = RedirectResponse("/admin" if user.get("role") == "ADMIN" else "/", status_code=302)
    res.delete_cookie(auth.GOOGLE_STATE_COOKIE, path="/")
    auth.set_session_cookie(res, auth.issue_session(str(user["_id"]), user["email"], user["role"]))
    return res


# ---------- Products ----------
@app.get("/api/products")
def list_products(page: int = 1, pageSize: int = 12, type: Optional[str] = None, material: Optional[str] = None,
                  category: Optional[str] = None, minPrice: Optional[float] = None, maxPrice: Optional[float] = None,
                  featured: Optional[str] = None, db=Depends(get_db)):
    return catalog.list_products(db, page=page, page_size=pageSize, type=type, material=material,
                                 category=category, min_price=minPrice, max_price=maxPrice,
                                 featured=featured == "true")


@app.get("/api/products/{slug}")
def get_product(slug: str, db=Depends(get_db)):
    return catalog.get_product(db, slug)


@app.post("/api/products", status_code=201)
def create_product(payload: Product, admin: dict = Depends(require_admin), db=Depends(get_db)):
    return catalog.create_product(db, payload, admin)


@app.patch("/api/products/{slug}")
def update_product(slug: str, payload: ProductUpdate, admin: dict = Depends(require_admin), db=Depends(get_db)):
    return catalog.update_product(db, slug, payload, admin)


@app.delete("/api/products/{slug}")
def delete_product(slug: str, admin: dict = Depends(require_admin), db=Depends(get_db)):
    catalog.delete_product(db, slug, admin)
    return {"ok": True}


# ---------- Categories ----------
@app.get("/api/categories")
def list_categories(db=Depends(get_db)):
    return {"items": catalog.list_categories(db, active_only=True)}


@app.get("/api/admin/categories")
def admin_list_categories(admin: dict = Depends(require_admin), db=Depends(get_db)):
    return {"items": catalog.list_categories(db, active_only=False)}


@app.post("/api/admin/categories")
def admin_create_category(payload: Category, admin: dict = Depends(require_admin), db=Depends(get_db)):
    return catalog.create_category(db, payload, admin)


@app.patch("/api/admin/categories/{category_id}")
def admin_update_category(category_id: str, payload: CategoryUpdate, admin: dict = Depends(require_admin),
                          db=Depends(get_db)):
    return catalog.update_category(db, category_id, payload, admin)


# ---------- Orders ----------
@app.post("/api/orders", status_code=201)
def create_order(payload: OrderCreate, user: Optional[dict] = Depends(get_optional_user), db=Depends(get_db)):
    return orders.place_order(db, payload, user)


@app.get("/api/orders")
def list_orders(page: int = 1, pageSize: int = 20, user: dict = Depends(get_current_user), db=Depends(get_db)):
    return orders.list_orders(db, user, page=page, page_size=pageSize)


@app.patch("/api/admin/orders/{order_id}")
def admin_change_status(order_id: str, payload: OrderStatusChange, admin: dict = Depends(require_admin),
                        db=Depends(get_db)):
    order = orders.update_status(db, order_id, payload.status)
    audit.record(db, "ORDER_STATUS_UPDATE", user_id=str(admin["_id"]), entity="order", entity_id=order["id"],
                 details={"orderId": order["id"], "status": order["status"]})
    return order


@app.get("/api/admin/orders/export")
def admin_export_orders(admin: dict = Depends(require_admin), db=Depends(get_db)):
    return xlsx_response(reports.export_orders(db), reports.export_filename())


# ---------- Payments (Mercado Pago) ----------
@app.post("/api/payments/mercadopago/preference")
def payment_preference(payload: OrderCreate, user: Optional[dict] = Depends(get_optional_user), db=Depends(get_db)):
    return payments.start_checkout(db, payload, user)


@app.get("/api/payments/mercadopago/status")
def payment_status():
    return {"enabled": payments.is_configured()}


@app.post("/api/payments/mercadopago/webhook")
async def payment_webhook(request: Request, db=Depends(get_db)):
    raw = await request.body()
    try:
        body = json.loads(raw) if raw else None
    except ValueError:
        return {"ok": True}
    try:
        await run_in_threadpool(payments.handle_webhook, db, body)
    except Exception:
        logger.exception("[mercadopago webhook] processing failed")
        return JSONResponse(status_code=500, content={"ok": False})
    return {"ok": True}


# ---------- Admin: catalog import ----------
@app.post("/api/admin/products/bulk")
def admin_bulk_import(file: UploadFile = File(...), admin: dict = Depends(require_admin), db=Depends(get_db)):
    filename = (file.filename or "").lower()
    if not filename.endswith(".xlsx"):
        raise HTTPException(status_code=400, detail="Solo se aceptan archivos Excel (.xlsx).")
    try:
        rows = bulk_import.read_rows(file.file.read())
    except bulk_import.ImportFileError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    if not rows:
        raise HTTPException(status_code=400, detail="El archivo no tiene filas de datos (solo encabezados o vacío).")
    result = bulk_import.import_products(db, rows)
    audit.record(db, "PRODUCT_BULK_IMPORT", user_id=str(admin["_id"]), entity="product",
                 details={"created": result["created"], "total": result["total"], "errors": len(result["errors"])})
    return result


@app.get("/api/admin/products/bulk/template")
def admin_bulk_template(admin: dict = Depends(require_admin), db=Depends(get_db)):
    categories = catalog.list_categories(db, active_only=True)
    return xlsx_response(bulk_import.build_template(categories), "plantilla-productos-goldlegacy.xlsx")


# ---------- Admin: back office ----------
@app.get("/api/admin/summary")
def admin_summary(admin: dict = Depends(require_admin), db=Depends(get_db)):
    return reports.summary(db)


@app.get("/api/admin/logs")
def admin_logs(page: int = 1, pageSize: int = 20, admin: dict = Depends(require_admin), db=Depends(get_db)):
    return audit.list_logs(db, page=page, page_size=pageSize)


@app.get("/api/admin/users")
def admin_list_users(admin: dict = Depends(require_admin), db=Depends(get_db)):
    return auth.list_users(db)


@app.patch("/api/admin/users/{user_id}")
def admin_update_user(user_id: str, payload: UserUpdate, admin: dict = Depends(require_admin), db=Depends(get_db)):
    changes = payload.model_dump(mode="json", exclude_none=True)
    if not changes:
        raise HTTPException(status_code=400, detail="Indica al menos un campo a actualizar (role o name)")
    user = auth.change_user(db, user_id, role=payload.role, name=payload.name)
    audit.record(db, "USER_UPDATE", user_id=str(admin["_id"]), entity="user", entity_id=user["id"],
                 details=changes)
    return user


# ---------- Saved addresses ----------
@app.get("/api/user/addresses")
def list_addresses(user: dict = Depends(get_current_user), db=Depends(get_db)):
    items = db["useraddress"].find({"user_id": str(user["_id"])}).sort([("created_at", -1), ("_id", -1)])
    return {"items": [serialize(a) for a in items]}


@app.post("/api/user/addresses", status_code=201)
def create_address(payload: UserAddress, user: dict = Depends(get_current_user), db=Depends(get_db)):
    doc = payload.model_dump(mode="json")
    doc["user_id"] = str(user["_id"])
    address_id = create_document(db, "useraddress", doc)
    return serialize(db["useraddress"].find_one({"_id": to_object_id(address_id)}))


@app.delete("/api/user/addresses/{address_id}")
def delete_address(address_id: str, user: dict = Depends(get_current_user), db=Depends(get_db)):
    oid = to_object_id(address_id)
    result = db["useraddress"].delete_one({"_id": oid, "user_id": str(user["_id"])}) if oid else None
    if result is None or result.deleted_count == 0:
        raise NotFound("Dirección no encontrada")
    return {"ok": True}


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
