"""Per-user order rollups for the admin dashboard."""

import logging
from typing import List

from pricing import round2

logger = logging.getLogger(__name__)


def order_stats_by_user(database) -> List[dict]:
    grouped = list(database["order"].aggregate([
        {"$group": {"_id": "$user_id", "totalOrders": {"$sum": 1}, "totalSpent": {"$sum": "$total_price"}}},
    ]))
    user_ids = [row["_id"] for row in grouped]
    names = {
        u["_id"]: u.get("display_name")
        for u in database["user"].find({"_id": {"$in": user_ids}}, {"display_name": 1})
    }
    stats = [
        {
            "user_id": str(row["_id"]),
            "user": names.get(row["_id"]),
            "totalOrders": row["totalOrders"],
            "totalSpent": round2(row["totalSpent"] or 0),
        }
        for row in grouped
    ]
    stats.sort(key=lambda r: (-r["totalSpent"], r["user_id"]))
    logger.debug("Computed order stats for %d users", len(stats))
    return stats
