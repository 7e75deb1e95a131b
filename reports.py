from datetime import datetime, timedelta, timezone
from io import BytesIO

from openpyxl import Workbook

from database import as_utc, serialize

STATUS_LABELS = {
    "PENDING": "Pendiente",
    "PAID": "Pagado",
    "SHIPPED": "Enviado",
    "CANCELLED": "Cancelado",
}

CHART_DAYS = 14

DETAIL_HEADERS = [
    "Fecha", "Hora", "ID Orden", "Cliente", "Email", "Teléfono", "Dirección", "Ciudad",
    "Estado", "Total orden (COP)", "Producto", "Cantidad", "Precio unit. (COP)", "Subtotal (COP)",
]

SUMMARY_HEADERS = [
    "ID Orden", "Fecha", "Hora", "Cliente", "Email", "Teléfono", "Dirección", "Ciudad",
    "Estado", "Total (COP)", "Nº ítems",
]


def summary(db, today=None) -> dict:
    today = today or datetime.now(timezone.utc)
    start = (today - timedelta(days=CHART_DAYS - 1)).replace(hour=0, minute=0, second=0, microsecond=0)

    revenue = list(db["order"].aggregate([{"$group": {"_id": None, "total": {"$sum": "$total"}}}]))
    by_status = db["order"].aggregate([{"$group": {"_id": "$status", "count": {"$sum": 1}}}])

    days = {(start + timedelta(days=d)).date(): {"orders": 0, "revenue": 0.0} for d in range(CHART_DAYS)}
    for order in db["order"].find({}, {"created_at": 1, "total": 1}).sort("created_at", -1):
        created = as_utc(order["created_at"])
        if created < start:
            break
        bucket = days.get(created.date())
        if bucket is not None:
            bucket["orders"] += 1
            bucket["revenue"] += float(order.get("total", 0))

    product_counts = {row["_id"]: row["count"] for row in db["product"].aggregate([
        {"$group": {"_id": "$category_id", "count": {"$sum": 1}}},
    ])}

    latest = db["order"].find({}).sort([("created_at", -1), ("_id", -1)]).limit(5)

    return {
        "productsCount": db["product"].count_documents({}),
        "ordersCount": db["order"].count_documents({}),
        "usersCount": db["user"].count_documents({}),
        "totalRevenue": revenue[0]["total"] if revenue else 0,
        "latestOrders": [serialize(o) for o in latest],
        "ordersOverTime": [
            {"date": day.isoformat(), "orders": v["orders"], "revenue": v["revenue"]}
            for day, v in sorted(days.items())
        ],
        "ordersByStatus": [
            {"name": STATUS_LABELS.get(row["_id"], row["_id"]), "value": row["count"]} for row in by_status
        ],
        "productsByCategory": [
            {"name": c["name"], "value": product_counts.get(str(c["_id"]), 0)}
            for c in db["category"].find({}, {"name": 1}).sort("name", 1)
        ],
    }


def _order_cells(order: dict):
    created = as_utc(order["created_at"])
    return {
        "Fecha": created.strftime("%d/%m/%Y"),
        "Hora": created.strftime("%H:%M"),
        "ID Orden": str(order["_id"]),
        "Cliente": order.get("customer_name", ""),
        "Email": order.get("customer_email") or "",
        "Teléfono": order.get("customer_phone") or "",
        "Dirección": order.get("shipping_address", ""),
        "Ciudad": order.get("shipping_city", ""),
        "Estado": order.get("status", ""),
    }


def export_orders(db) -> bytes:
    """Two-sheet workbook: one row per line item, then one row per order."""
    orders = list(db["order"].find({}).sort([("created_at", -1), ("_id", -1)]))

    workbook = Workbook()
    detail = workbook.active
    detail.title = "Detalle ítems"
    detail.append(DETAIL_HEADERS)
    resumen = workbook.create_sheet("Resumen órdenes")
    resumen.append(SUMMARY_HEADERS)

    for order in orders:
        cells = _order_cells(order)
        total = float(order.get("total", 0))
        for item in order.get("items", []):
            row = dict(cells)
            row.update({
                "Total orden (COP)": total,
                "Producto": item.get("product_name", ""),
                "Cantidad": item["quantity"],
                "Precio unit. (COP)": float(item["unit_price"]),
                "Subtotal (COP)": float(item["unit_price"]) * item["quantity"],
            })
            detail.append([row[h] for h in DETAIL_HEADERS])

        row = dict(cells)
        row.update({
            "Total (COP)": total,
            "Nº ítems": sum(item["quantity"] for item in order.get("items", [])),
        })
        resumen.append([row[h] for h in SUMMARY_HEADERS])

    buffer = BytesIO()
    workbook.save(buffer)
    return buffer.getvalue()


def export_filename(today=None) -> str:
    today = today or datetime.now(timezone.utc)
    return f"ordenes-goldlegacy-{today.date().isoformat()}.xlsx"
