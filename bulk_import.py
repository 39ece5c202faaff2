"""
CSV product upload for the admin dashboard.

The first row names the columns. title, description, price, stock, brand and
category are required; discountpercentage, rating, thumbnail and images are
optional. Several images go in one cell separated by ';'.
"""
import csv
import io
import logging
from typing import List

from pydantic import ValidationError

import schemas
from storage import Storage

logger = logging.getLogger(__name__)

REQUIRED_COLUMNS = ["title", "description", "price", "stock", "brand", "category"]
# CSV header -> ProductCreate field
COLUMN_FIELDS = {
    "title": "title",
    "description": "description",
    "price": "price",
    "stock": "stock",
    "brand": "brand",
    "category": "category",
    "discountpercentage": "discount_percentage",
    "rating": "rating",
    "thumbnail": "thumbnail",
    "images": "images",
}


class BulkImportError(ValueError):
    pass


def _row_to_product(headers: List[str], values: List[str], line: int) -> schemas.ProductCreate:
    data = {}
    for header, value in zip(headers, values):
        field = COLUMN_FIELDS.get(header)
        if field is None or value == "":
            continue
        if field == "images":
            data[field] = [image.strip() for image in value.split(";") if image.strip()]
        else:
            data[field] = value

    if not data.get("thumbnail") and data.get("images"):
        data["thumbnail"] = data["images"][0]
    if not data.get("images") and data.get("thumbnail"):
        data["images"] = [data["thumbnail"]]

    try:
        return schemas.ProductCreate(**data)
    except ValidationError as e:
        problems = "; ".join(f"{'.'.join(map(str, err['loc']))}: {err['msg']}" for err in e.errors())
        raise BulkImportError(f"Line {line}: {problems}") from e


def parse_products_csv(text: str) -> List[schemas.ProductCreate]:
    rows = list(csv.reader(io.StringIO(text.strip())))
    if len(rows) < 2:
        raise BulkImportError("CSV file is empty or invalid")

    headers = [header.strip().lower() for header in rows[0]]
    missing = [column for column in REQUIRED_COLUMNS if column not in headers]
    if missing:
        raise BulkImportError(f"Missing required columns: {', '.join(missing)}")

    products = []
    for line, row in enumerate(rows[1:], start=2):
        values = [value.strip() for value in row]
        if not any(values):
            continue
        if len(values) != len(headers):
            raise BulkImportError(f"Line {line} has {len(values)} values but should have {len(headers)}")
        products.append(_row_to_product(headers, values, line))
    return products


def import_products(storage: Storage, text: str) -> List[schemas.Product]:
    """Validates the whole file first, so a bad line creates nothing."""
    products = [storage.create_product(product) for product in parse_products_csv(text)]
    logger.info(f"Bulk import created {len(products)} products")
    return products
