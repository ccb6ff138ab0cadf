"""Capability distribution rollups for analyst mode."""
import asyncio
import logging
from typing import Any, Dict, List, Sequence

from talentbrain.config import DB_TIMEOUT
from talentbrain.errors import DatabaseError, InvalidInput
from talentbrain.store import WorkforceStore

logger = logging.getLogger(__name__)

SCOPES = ("taxonomy", "division", "region", "company")


class CapabilityRollup:
    """Runs the per-scope capability heatmap query."""

    def __init__(self, store: WorkforceStore, timeout: float = DB_TIMEOUT):
        self.store = store
        self.timeout = timeout

    async def run(self, scope: str = "taxonomy", company_ids: Sequence[str] = ()) -> List[Dict[str, Any]]:
        """
        Rows of {group, capability, role_count, total_roles, company, percentage}.

        An empty ``company_ids`` means every company.
        """
        if scope not in SCOPES:
            raise InvalidInput(f"Unsupported analysis scope: {scope}")

        try:
            rows = await asyncio.wait_for(
                self.store.capability_heatmap(scope, list(company_ids or [])), timeout=self.timeout
            )
        except asyncio.TimeoutError as e:
            raise DatabaseError(f"Capability heatmap query timed out after {self.timeout}s") from e

        logger.info(
            f"📊 Capability heatmap by {scope}: {len(rows)} rows "
            f"({len(company_ids) if company_ids else 'all'} companies)"
        )
        return rows


def summarize_heatmap(rows: List[Dict[str, Any]]) -> Dict[str, Any]:
    """
    Fold heatmap rows into a group × capability matrix plus summary stats.

    Returns:
        {
          "matrix": {group: {capability: role_count}},
          "summary": {total_roles, total_groups, total_capabilities,
                      top_capabilities: [...10], groups: [... top 5 each]}
        }
    """
    capabilities: List[str] = []
    group_totals: Dict[str, int] = {}
    matrix: Dict[str, Dict[str, int]] = {}

    for row in rows:
        group = row.get("group") or "organization"
        capability = row.get("capability")
        if not capability:
            continue
        if capability not in capabilities:
            capabilities.append(capability)
        group_totals[group] = int(row.get("total_roles") or 0)
        matrix.setdefault(group, {})[capability] = int(row.get("role_count") or 0)

    # Fill holes so every group has every capability column
    for group in matrix:
        for capability in capabilities:
            matrix[group].setdefault(capability, 0)

    capability_stats: Dict[str, Dict[str, int]] = {}
    for counts in matrix.values():
        for capability, count in counts.items():
            stats = capability_stats.setdefault(capability, {"total": 0, "groups": 0})
            if count > 0:
                stats["total"] += count
                stats["groups"] += 1

    top_capabilities = [
        {
            "name": capability,
            "total_occurrences": stats["total"],
            "groups_present": stats["groups"],
            "average_per_group": round(stats["total"] / stats["groups"], 1) if stats["groups"] else 0.0,
        }
        for capability, stats in sorted(capability_stats.items(), key=lambda kv: kv[1]["total"], reverse=True)[:10]
    ]

    groups = []
    for name in sorted(matrix):
        total = group_totals.get(name, 0)
        ranked = sorted(matrix[name].items(), key=lambda kv: kv[1], reverse=True)[:5]
        groups.append(
            {
                "name": name,
                "total_roles": total,
                "unique_capabilities": sum(1 for v in matrix[name].values() if v > 0),
                "top_capabilities": [
                    {
                        "name": capability,
                        "count": count,
                        "percentage": round(count / total * 100, 1) if total else 0.0,
                    }
                    for capability, count in ranked
                ],
            }
        )

    return {
        "matrix": matrix,
        "summary": {
            "total_roles": sum(group_totals.values()),
            "total_groups": len(matrix),
            "total_capabilities": len(capabilities),
            "top_capabilities": top_capabilities,
            "groups": groups,
        },
    }
