"""
Practice-management production aggregation.

Folds the monthly roll-ups of the practice-management source into one
summary (months deduplicated, later entries win; referral sources
ranked by production) for the summary stage.
"""

import json
import re
from typing import Any


def _to_number(value: Any) -> float:
    if isinstance(value, bool):
        return 0.0
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        cleaned = re.sub(r"[^0-9.\-]", "", value)
        try:
            return float(cleaned)
        except ValueError:
            return 0.0
    return 0.0


def month_entries(raw: Any) -> list[dict]:
    """Pull the list of monthly entries out of a practice-management payload."""
    if raw is None:
        return []
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except ValueError:
            return []
    if isinstance(raw, list):
        return [e for e in raw if isinstance(e, dict)]
    if isinstance(raw, dict):
        for key in ("monthly_rollup", "report_data"):
            if isinstance(raw.get(key), list):
                return [e for e in raw[key] if isinstance(e, dict)]
    return []


def aggregate_production(raw: Any) -> dict:
    months: dict[str, dict] = {}
    for entry in month_entries(raw):
        month = str(entry.get("month") or "").strip()
        if not month:
            continue
        self_refs = _to_number(entry.get("self_referrals"))
        doctor_refs = _to_number(entry.get("doctor_referrals"))
        total_refs = (
            _to_number(entry["total_referrals"])
            if entry.get("total_referrals") is not None
            else self_refs + doctor_refs
        )
        months[month] = {
            "month": month,
            "selfReferrals": self_refs,
            "doctorReferrals": doctor_refs,
            "totalReferrals": total_refs,
            "productionTotal": _to_number(entry.get("production_total")),
            "sources": [s for s in entry.get("sources") or [] if isinstance(s, dict)],
        }

    sources: dict[str, dict] = {}
    total_referrals = 0.0
    total_production = 0.0
    for data in months.values():
        total_referrals += data["totalReferrals"]
        total_production += data["productionTotal"]
        for source in data["sources"]:
            name = str(source.get("name") or "").strip()
            if not name:
                continue
            agg = sources.setdefault(name, {"name": name, "referrals": 0.0, "production": 0.0})
            agg["referrals"] += _to_number(source.get("referrals"))
            agg["production"] += _to_number(source.get("production"))

    ranked = sorted(sources.values(), key=lambda s: s["production"], reverse=True)
    return {
        "months": [months[k] for k in sorted(months)],
        "sources": [
            {
                "rank": i + 1,
                "name": s["name"],
                "referrals": round(s["referrals"], 2),
                "production": round(s["production"], 2),
                "percentage": round(s["production"] / total_production * 100, 2)
                if total_production > 0
                else 0,
            }
            for i, s in enumerate(ranked)
        ],
        "totals": {
            "totalReferrals": round(total_referrals, 2),
            "totalProduction": round(total_production, 2),
        },
    }
