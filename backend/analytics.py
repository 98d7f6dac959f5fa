"""
Dashboard rollups for the admin back office.

Everything is computed from full collection reads; the store is assumed to be
small enough for a single pass per request.
"""
from datetime import date, datetime, timedelta, timezone
from typing import Dict, Iterable, List, Optional

from schemas import ORDER_STATUSES

LOW_STOCK_THRESHOLD = 10
RECENT_ORDER_COUNT = 5
REVENUE_DAYS = 7


def _order_day(value) -> Optional[str]:
    if isinstance(value, datetime):
        # pymongo hands back naive datetimes that are already UTC
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc)
        return value.date().isoformat()
    if isinstance(value, str) and len(value) >= 10:
        return value[:10]
    return None


def total_revenue(orders: Iterable[dict]) -> float:
    return round(sum(float(o.get("total", 0)) for o in orders if o.get("status") != "cancelled"), 2)


def count_by_status(orders: Iterable[dict]) -> Dict[str, int]:
    counts = {status: 0 for status in ORDER_STATUSES}
    for o in orders:
        status = o.get("status")
        if status in counts:
            counts[status] += 1
    return counts


def low_stock(products: Iterable[dict], threshold: int = LOW_STOCK_THRESHOLD) -> List[dict]:
    flagged = [p for p in products if int(p.get("stock", 0)) < threshold]
    return sorted(flagged, key=lambda p: int(p.get("stock", 0)))


def revenue_series(orders: Iterable[dict], today: Optional[date] = None, days: int = REVENUE_DAYS) -> List[dict]:
    """Trailing per-day revenue, oldest day first, ending with ``today`` (UTC)."""
    today = today or datetime.now(timezone.utc).date()
    buckets = {(today - timedelta(days=offset)).isoformat(): 0.0 for offset in range(days - 1, -1, -1)}
    for o in orders:
        if o.get("status") == "cancelled":
            continue
        day = _order_day(o.get("created_at"))
        if day in buckets:
            buckets[day] += float(o.get("total", 0))
    return [{"date": day, "revenue": round(revenue, 2)} for day, revenue in buckets.items()]


def compute_analytics(
    orders: List[dict],
    products: List[dict],
    categories: List[dict],
    user_count: int,
    today: Optional[date] = None,
) -> dict:
    counts = count_by_status(orders)
    # ISO timestamps sort chronologically as strings
    recent = sorted(orders, key=lambda o: str(o.get("created_at") or ""), reverse=True)[:RECENT_ORDER_COUNT]
    return {
        "statistics": {
            "totalRevenue": total_revenue(orders),
            "totalOrders": len(orders),
            "pendingOrders": counts["pending"],
            "completedOrders": counts["delivered"],
            "cancelledOrders": counts["cancelled"],
            "totalProducts": len(products),
            "totalCategories": len(categories),
            "totalUsers": user_count,
        },
        "ordersByStatus": counts,
        "lowStockProducts": low_stock(products),
        "recentOrders": recent,
        "revenueChart": revenue_series(orders, today=today),
    }
