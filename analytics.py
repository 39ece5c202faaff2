"""
Dashboard metrics, recomputed from the store on every call.
"""
import logging
from datetime import date, datetime, time, timedelta
from typing import List, Optional

from sqlalchemy import func, select

import models
import schemas
from storage import Storage, resolve

logger = logging.getLogger(__name__)

# Timeframes offered by the dashboard, in days
TIMEFRAMES = {"7d": 7, "30d": 30, "90d": 90}
DEFAULT_TIMEFRAME = "7d"
TOP_PRODUCTS_LIMIT = 5


def _count(storage: Storage, model, live_only: bool = False) -> int:
    query = select(func.count()).select_from(model)
    if live_only:
        query = query.where(model.deleted_at.is_(None))
    with storage.session() as session:
        return session.execute(query).scalar_one()


def user_count(storage: Storage) -> int:
    return _count(storage, models.User, live_only=True)


def order_count(storage: Storage) -> int:
    return _count(storage, models.Order)


def product_count(storage: Storage) -> int:
    return _count(storage, models.Product, live_only=True)


def total_revenue(storage: Storage) -> float:
    """Sum of total_amount over every order, cancelled ones included."""
    with storage.session() as session:
        return float(session.execute(select(func.coalesce(func.sum(models.Order.total_amount), 0))).scalar_one())


def order_stats(storage: Storage, days: int = 7, today: Optional[date] = None) -> List[schemas.OrderStat]:
    """
    One entry per calendar day of the window [today - (days - 1), today],
    zero-filled, labelled DD/MM and ordered by the full date so windows
    that cross a year boundary stay in order.
    """
    today = today or storage.clock().date()
    start = today - timedelta(days=days - 1)
    buckets = {start + timedelta(days=offset): {"count": 0, "revenue": 0.0} for offset in range(days)}

    with storage.session() as session:
        rows = session.execute(
            select(models.Order.created_at, models.Order.total_amount)
            .where(models.Order.created_at >= datetime.combine(start, time.min))
        ).all()

    for created_at, total_amount in rows:
        bucket = buckets.get(created_at.date())
        if bucket is None: # after today
            continue
        bucket["count"] += 1
        bucket["revenue"] += total_amount

    return [
        schemas.OrderStat(date=day.strftime("%d/%m"), count=bucket["count"], revenue=bucket["revenue"])
        for day, bucket in sorted(buckets.items())
    ]


def top_products(storage: Storage, limit: int = TOP_PRODUCTS_LIMIT) -> List[schemas.TopProduct]:
    """
    Best sellers by units sold. Titles are read at aggregation time, so a
    renamed product shows its current title.
    """
    sold = func.sum(models.OrderItem.quantity)
    revenue = func.sum(models.OrderItem.price * models.OrderItem.quantity)
    with storage.session() as session:
        rows = session.execute(
            select(models.OrderItem.product_id, sold, revenue)
            .group_by(models.OrderItem.product_id)
            .order_by(func.min(models.OrderItem.id)) # first sale first, for stable ties
        ).all()
        ranking = [
            schemas.TopProduct(
                id=product_id,
                title=resolve(session, models.Product, product_id).title,
                total_sold=total_sold,
                revenue=total,
            )
            for product_id, total_sold, total in rows
        ]
    ranking.sort(key=lambda entry: entry.total_sold, reverse=True)
    return ranking[:limit]


def get_analytics(storage: Storage, timeframe: str = DEFAULT_TIMEFRAME) -> schemas.Analytics:
    """Dashboard payload; an unknown timeframe falls back to 7 days."""
    days = TIMEFRAMES.get(timeframe, TIMEFRAMES[DEFAULT_TIMEFRAME])
    logger.info(f"Computing analytics for timeframe {timeframe} ({days} days)")
    return schemas.Analytics(
        user_count=user_count(storage),
        order_count=order_count(storage),
        product_count=product_count(storage),
        revenue=total_revenue(storage),
        order_stats=order_stats(storage, days),
        top_products=top_products(storage, TOP_PRODUCTS_LIMIT),
        timeframe=timeframe,
    )
