"""
Bulk product import from Excel.

The first sheet of the workbook is read; its first row holds the headers. Each
logical field accepts a few header names (English or Spanish), resolved once to
column positions before the rows are read. Rows are validated and created one
by one: an invalid row is reported and skipped, the rest of the batch goes on.
Row numbers in errors are spreadsheet rows, so the first data row is row 2;
blank rows are skipped but still counted.
"""
import logging
from io import BytesIO
from typing import Dict, List, Optional
from urllib.parse import urlparse

from openpyxl import Workbook, load_workbook
from openpyxl.worksheet.datavalidation import DataValidation
from pymongo.errors import PyMongoError

from catalog import slugify
from database import create_document
from schemas import ProductType

logger = logging.getLogger(__name__)

HEADER_ALIASES = {
    "name": ("name", "nombre"),
    "slug": ("slug",),
    "description": ("description", "descripcion"),
    "price": ("price", "precio"),
    "material": ("material",),
    "type": ("type", "tipo"),
    "stock": ("stock",),
    "is_featured": ("isFeatured", "destacado"),
    "category": ("categorySlug", "categoria", "categoría"),
    "image1": ("image1", "imagen1"),
    "image2": ("image2", "imagen2"),
}

PRODUCT_TYPES = {t.value for t in ProductType}

LOCALIZED_TYPES = {
    "cadena": "CHAIN",
    "anillo": "RING",
    "pulsera": "BRACELET",
    "arete": "EARRING",
    "aretes": "EARRING",
    "dije": "PENDANT",
    "dijes": "PENDANT",
}

TEMPLATE_TYPES = ["Cadena", "Anillo", "Pulsera", "Arete", "Dije"]

TEMPLATE_HEADERS = [
    "nombre", "slug", "descripcion", "precio", "material", "tipo",
    "stock", "destacado", "categoria", "imagen1", "imagen2",
]

TRUTHY = {"1", "true", "si", "sí", "yes"}

TEMPLATE_ROWS = 500


class ImportFileError(Exception):
    pass


def resolve_columns(header: List[object]) -> Dict[str, List[int]]:
    """Map each logical field to the header positions that feed it, in alias order."""
    positions = {}
    for idx, cell in enumerate(header):
        if cell is None:
            continue
        positions.setdefault(str(cell).strip(), idx)
    return {
        field: [positions[alias] for alias in aliases if alias in positions]
        for field, aliases in HEADER_ALIASES.items()
    }


class Row:
    """One data row read through the resolved column map."""

    def __init__(self, values, columns: Dict[str, List[int]], sheet_row: int):
        self.values = values
        self.columns = columns
        self.sheet_row = sheet_row

    def raw(self, field: str):
        for idx in self.columns[field]:
            value = self.values[idx] if idx < len(self.values) else None
            if value is not None and str(value).strip() != "":
                return value
        return None

    def text(self, field: str) -> str:
        value = self.raw(field)
        if value is None:
            return ""
        if isinstance(value, bool):
            return "true" if value else "false"
        return str(value).strip()

    def number(self, field: str) -> Optional[float]:
        value = self.raw(field)
        if value is None or isinstance(value, bool):
            return None
        if isinstance(value, (int, float)):
            return float(value)
        try:
            number = float(str(value).strip().replace(",", "."))
        except ValueError:
            return None
        if number != number or number in (float("inf"), float("-inf")):
            return None
        return number


def read_rows(content: bytes) -> List[Row]:
    try:
        workbook = load_workbook(BytesIO(content), read_only=True, data_only=True)
    except Exception as exc:
        raise ImportFileError(
            "No se pudo leer el archivo Excel. Verifica que sea .xlsx y que la primera fila tenga los encabezados."
        ) from exc
    try:
        sheet = workbook.worksheets[0]
        iterator = sheet.iter_rows(values_only=True)
        header = next(iterator, None)
        if header is None:
            return []
        columns = resolve_columns(list(header))
        rows = []
        for sheet_row, values in enumerate(iterator, start=2):
            if all(v is None or str(v).strip() == "" for v in values):
                continue
            rows.append(Row(list(values), columns, sheet_row))
        return rows
    finally:
        workbook.close()


def _resolve_type(raw: str) -> Optional[str]:
    if raw.upper() in PRODUCT_TYPES:
        return raw.upper()
    return LOCALIZED_TYPES.get(raw.lower())


def _is_http_url(value: str) -> bool:
    parsed = urlparse(value)
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def _unique_slug(slug: str, taken: set) -> str:
    if slug not in taken:
        return slug
    suffix = 1
    while f"{slug}-{suffix}" in taken:
        suffix += 1
    return f"{slug}-{suffix}"


def import_products(db, rows: List[Row]) -> dict:
    category_by_slug = {
        c["slug"].lower(): str(c["_id"]) for c in db["category"].find({}, {"slug": 1})
    }
    taken_slugs = {p["slug"] for p in db["product"].find({}, {"slug": 1})}

    errors = []
    created = 0

    for i, row in enumerate(rows):
        row_num = row.sheet_row

        name = row.text("name")
        if len(name) < 2:
            errors.append({"row": row_num, "message": "Nombre vacío o muy corto"})
            continue

        slug = row.text("slug") or slugify(name) or f"producto-{i + 1}"
        slug = _unique_slug(slug, taken_slugs)
        taken_slugs.add(slug)

        description = row.text("description")
        if len(description) < 10:
            errors.append({"row": row_num, "message": "Descripción vacía o muy corta (mín. 10 caracteres)"})
            continue

        price = row.number("price")
        if price is None or price <= 0:
            errors.append({"row": row_num, "message": "Precio inválido o faltante"})
            continue

        material = row.text("material")
        if len(material) < 2:
            errors.append({"row": row_num, "message": "Material vacío o muy corto"})
            continue

        product_type = _resolve_type(row.text("type"))
        if product_type is None:
            errors.append({
                "row": row_num,
                "message": "Tipo inválido. Usa: Cadena, Anillo, Pulsera, Arete, Dije (o CHAIN, RING, etc.)",
            })
            continue

        stock = row.number("stock")
        stock = int(stock) if stock is not None and stock.is_integer() and stock >= 0 else 0

        is_featured = row.text("is_featured").lower() in TRUTHY

        category_slug = row.text("category")
        category_id = category_by_slug.get(category_slug.lower()) if category_slug else None

        images = [url for url in (row.text("image1"), row.text("image2")) if url and _is_http_url(url)]
        if not images:
            errors.append({"row": row_num, "message": "Al menos una imagen (image1) con URL válida"})
            continue

        try:
            create_document(db, "product", {
                "name": name,
                "slug": slug,
                "description": description,
                "price": price,
                "material": material,
                "type": product_type,
                "images": images,
                "stock": stock,
                "is_featured": is_featured,
                "category_id": category_id,
            })
        except PyMongoError as exc:
            logger.warning("Bulk import row %d failed: %s", row_num, exc)
            errors.append({"row": row_num, "message": str(exc) or "Error al crear el producto"})
            continue
        created += 1

    return {"created": created, "total": len(rows), "errors": errors}


def build_template(categories: List[dict]) -> bytes:
    """Workbook with the import headers, an example row and dropdowns for tipo and categoria."""
    workbook = Workbook()
    products = workbook.active
    products.title = "Productos"
    options = workbook.create_sheet("Opciones")

    options["A1"] = "Tipo (columna tipo en Productos)"
    for i, label in enumerate(TEMPLATE_TYPES, start=2):
        options[f"A{i}"] = label
    options["C1"] = "Categoría - slug (columna categoria en Productos)"
    for i, category in enumerate(categories, start=2):
        options[f"C{i}"] = category["slug"]
        options[f"D{i}"] = category["name"]

    last_category_row = max(2, len(categories) + 1)

    products.append(TEMPLATE_HEADERS)
    products.append([
        "Cadena Oro 18K",
        "cadena-oro-18k",
        "Pieza en oro de 18 kilates.",
        760000,
        "Oro 18K",
        "Cadena",
        5,
        False,
        categories[0]["slug"] if categories else "",
        "https://ejemplo.com/img1.jpg",
        "https://ejemplo.com/img2.jpg",
    ])

    type_list = DataValidation(type="list", formula1=f"Opciones!$A$2:$A${len(TEMPLATE_TYPES) + 1}", allow_blank=True)
    category_list = DataValidation(type="list", formula1=f"Opciones!$C$2:$C${last_category_row}", allow_blank=True)
    products.add_data_validation(type_list)
    products.add_data_validation(category_list)
    type_list.add(f"F2:F{TEMPLATE_ROWS}")
    category_list.add(f"I2:I{TEMPLATE_ROWS}")

    buffer = BytesIO()
    workbook.save(buffer)
    return buffer.getvalue()
