import time
from collections import Counter
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query

from database import ACTIVITY, COMPANY, COUNTRY, PERSON, Database, get_db, get_documents, to_dict, utcnow

router = APIRouter(prefix="/dashboard", tags=["dashboard"])

GROWTH_MONTHS = 6
_STARTED_AT = time.time()


def recent_months(now: datetime, months: int = GROWTH_MONTHS) -> List[str]:
    """``YYYY-MM`` labels ending with the current month, oldest first."""
    out = []
    for back in range(months - 1, -1, -1):
        year, month = now.year, now.month - back
        while month < 1:
            month += 12
            year -= 1
        out.append(f"{year}-{month:02d}")
    return out


def month_of(ts: Optional[datetime]) -> Optional[str]:
    # stored datetimes come back naive UTC unless the client is tz aware
    if ts is None:
        return None
    if ts.tzinfo is not None:
        ts = ts.astimezone(timezone.utc)
    return f"{ts.year}-{ts.month:02d}"


def _avg(values: List[int]) -> float:
    return round(sum(values) / len(values), 2) if values else 0.0


@router.get("/stats")
def get_dashboard_stats(db: Database = Depends(get_db)):
    total_countries = db[COUNTRY].count_documents({})
    total_companies = db[COMPANY].count_documents({})
    total_people = db[PERSON].count_documents({})
    active_tracking = db[PERSON].count_documents({"isActive": True})

    per_country = list(db[COMPANY].aggregate([
        {"$group": {"_id": "$country", "count": {"$sum": 1}}},
    ]))

    companies = list(db[COMPANY].find({}, {"ipAddresses": 1, "subdomains": 1, "country": 1}))
    people_per_company = Counter(p.get("company") for p in db[PERSON].find({}, {"company": 1}))
    total_ips = sum(len(c.get("ipAddresses") or []) for c in companies)
    total_subdomains = sum(len(c.get("subdomains") or []) for c in companies)

    labels = recent_months(utcnow())
    company_months = Counter(month_of(c.get("createdAt")) for c in db[COMPANY].find({}, {"createdAt": 1}))
    person_months = Counter(month_of(p.get("createdAt")) for p in db[PERSON].find({}, {"createdAt": 1}))
    growth = [
        {"name": label, "companies": company_months.get(label, 0), "people": person_months.get(label, 0)}
        for label in labels
    ]

    regions = {c["_id"]: c.get("region") for c in db[COUNTRY].find({}, {"region": 1})}
    by_region = Counter(
        regions.get(c.get("country")) or "Unspecified" for c in companies if c.get("country") in regions
    )
    region_distribution = [{"name": name, "value": value} for name, value in by_region.most_common()]

    return {
        "success": True,
        "data": {
            "totalCountries": total_countries,
            "totalCompanies": total_companies,
            "totalPeople": total_people,
            "activeTracking": active_tracking,
            "quickStats": {
                "avgCompaniesPerCountry": _avg([g["count"] for g in per_country]),
                "avgPeoplePerCompany": _avg([people_per_company.get(c["_id"], 0) for c in companies]),
                "totalIPs": total_ips,
                "totalSubdomains": total_subdomains,
            },
            "charts": {"growth": growth, "regionDistribution": region_distribution},
        },
    }


@router.get("/overview")
def get_system_overview(db: Database = Depends(get_db)):
    countries = db[COUNTRY].count_documents({})
    companies = db[COMPANY].count_documents({})
    people = db[PERSON].count_documents({})
    return {
        "success": True,
        "data": {
            "database": {"collections": len(db.list_collection_names()), "documents": companies + people},
            "totalEntities": {"countries": countries, "companies": companies, "people": people},
            "infrastructure": {
                "servers": 1,
                "services": ["API", "Database", "Authentication"],
                "uptime": round(time.time() - _STARTED_AT, 3),
            },
        },
    }


def _recent_items(db: Database, limit: int) -> List[Dict[str, Any]]:
    """Synthesized feed from the newest records when nothing was logged."""
    newest = [("createdAt", -1)]

    def latest(collection: str, fields: Dict[str, int]) -> List[Dict[str, Any]]:
        return get_documents(db, collection, limit=limit, sort=newest, projection={**fields, "createdAt": 1})

    items = []
    for c in latest(COMPANY, {"name": 1}):
        items.append(("company:create", c.get("createdAt"), f"Created company: {c.get('name')}"))
    for p in latest(PERSON, {"firstName": 1, "lastName": 1}):
        items.append(("person:create", p.get("createdAt"), f"Created person: {p.get('firstName')} {p.get('lastName')}"))
    for c in latest(COUNTRY, {"name": 1}):
        items.append(("country:create", c.get("createdAt"), f"Created country: {c.get('name')}"))

    def stamp(item):
        ts = item[1]
        if ts is None:
            return datetime.min.replace(tzinfo=timezone.utc)
        return ts if ts.tzinfo else ts.replace(tzinfo=timezone.utc)

    items.sort(key=stamp, reverse=True)
    return [
        {"type": t, "user": "system", "timestamp": ts, "details": details, "priority": 0}
        for t, ts, details in items[:limit]
    ]


@router.get("/activities")
def get_recent_activities(
    limit: int = Query(10, ge=1, le=100),
    types: Optional[str] = Query(None),
    db: Database = Depends(get_db),
):
    filt: Dict[str, Any] = {"visible": True}
    type_filter = [t.strip() for t in types.split(",") if t.strip()] if types else []
    if type_filter:
        filt["type"] = {"$in": type_filter}

    cursor = db[ACTIVITY].find(filt).sort([("priority", -1), ("timestamp", -1)]).limit(limit)
    activities = [to_dict(a) for a in cursor]
    if not activities:
        activities = _recent_items(db, limit)
    return {"success": True, "data": activities}
