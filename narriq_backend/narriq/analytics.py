import logging
from typing import Any, Dict, List

from .errors import NotFoundError
from .kv_storage import KVStorage

logger = logging.getLogger(__name__)

TOP_VARIANTS = 5
RECENT_EVENTS = 20


def _mean(values: List[float]) -> float:
    return round(sum(values) / len(values), 1) if values else 0.0


async def platform_summary(store: KVStorage) -> Dict[str, Any]:
    projects = await store.list_group("projects")
    jobs = await store.list_group("renderJobs")
    records = await store.list_group("analytics")
    logs = await store.list_group("eventLog")

    results = []
    for record in records:
        for r in record.get("results", []):
            results.append({**r, "projectId": record.get("projectId")})

    completed = sum(1 for j in jobs if j.get("status") == "completed")
    failed = sum(1 for j in jobs if j.get("status") == "failed")

    events = []
    for log in logs:
        events.extend(log)
    events.sort(key=lambda e: e.get("at", 0), reverse=True)

    return {
        "platform": {
            "totalProjects": len(projects),
            "readyProjects": sum(1 for p in projects if p.get("status") == "ready"),
            "totalVariants": sum(len(p.get("variants", [])) for p in projects),
            "totalRenders": len(jobs),
            "rendersCompleted": completed,
            "rendersFailed": failed,
            "successRate": round(completed / len(jobs) * 100, 1) if jobs else 0.0,
            "avgScore": _mean([r.get("overallScore", 0) for r in results]),
        },
        "topVariants": sorted(results, key=lambda r: r.get("overallScore", 0), reverse=True)[:TOP_VARIANTS],
        "recentEvents": events[:RECENT_EVENTS],
    }


async def project_summary(store: KVStorage, project_id: str) -> Dict[str, Any]:
    record = await store.get("analytics", project_id)
    project = await store.get("projects", project_id)
    if record is None and project is None:
        raise NotFoundError("Analytics not found", projectId=project_id)

    results = (record or {}).get("results", [])
    best = max(results, key=lambda r: r.get("overallScore", 0)) if results else None
    return {
        "projectId": project_id,
        "results": results,
        "averageScore": _mean([r.get("overallScore", 0) for r in results]),
        "bestVariant": best,
        "analyzedAt": (record or {}).get("analyzedAt"),
        "events": await store.get("eventLog", project_id) or [],
    }
