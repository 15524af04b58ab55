import logging
from typing import Any, Dict, List

from fastapi import APIRouter, Depends, Request
from fastapi.responses import Response
from pymongo import ReturnDocument

import exports
from activity import record_activity
from auth import require_admin
from config import Settings, get_settings
from database import COMPANY, COUNTRY, PERSON, Database, create_unique_document, get_db, object_id, to_dict, utcnow
from errors import ConflictError, NotFoundError, ValidationError
from people import PEOPLE_ORDER
from query import EXACT, REFERENCE, Reference, ResourceSpec, populate, run_list, serialize
from ratelimit import export_limiter
from schemas import Company, CompanyUpdate, IpAddressPayload, SubdomainPayload

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/companies", tags=["companies"])


def add_counts(db: Database, rows: List[Dict[str, Any]]) -> None:
    for row in rows:
        row["personCount"] = db[PERSON].count_documents({"company": object_id(row["id"])})
        row["ipCount"] = len(row.get("ipAddresses") or [])
        row["subdomainCount"] = len(row.get("subdomains") or [])


COMPANIES = ResourceSpec(
    collection=COMPANY,
    default_sort="name",
    sort_fields=(
        "name", "industry", "website", "foundedYear", "employeeCount",
        "isActive", "createdAt", "updatedAt",
    ),
    search_fields=("name", "industry", "ipAddresses", "subdomains"),
    filters={"industry": EXACT, "country": REFERENCE},
    references=(Reference("country", COUNTRY, ("name", "code")),),
    decorate=add_counts,
)

# people shown inside a single company
MEMBER_FIELDS = {"firstName": 1, "lastName": 1, "email": 1, "position": 1, "isActive": 1, "photo": 1}


def _get_or_404(db: Database, company_id: str) -> Dict[str, Any]:
    company = db[COMPANY].find_one({"_id": object_id(company_id, "company id")})
    if not company:
        raise NotFoundError("Company not found")
    return company


def _one(db: Database, oid) -> Dict[str, Any]:
    return serialize(db, COMPANIES, [db[COMPANY].find_one({"_id": oid})])[0]


def _members(db: Database, oid) -> List[Dict[str, Any]]:
    return [to_dict(p) for p in db[PERSON].find({"company": oid}, MEMBER_FIELDS).sort(PEOPLE_ORDER)]


def _require_country(db: Database, oid) -> None:
    if not db[COUNTRY].find_one({"_id": oid}, {"_id": 1}):
        raise NotFoundError("Country not found")


@router.get("")
def list_companies(request: Request, db: Database = Depends(get_db)):
    return run_list(db, COMPANIES, request.query_params)


@router.get("/{company_id}")
def get_company(company_id: str, db: Database = Depends(get_db)):
    company = _get_or_404(db, company_id)
    data = serialize(db, COMPANIES, [company])[0]
    data["people"] = _members(db, company["_id"])
    return {"success": True, "data": data}


@router.post("", status_code=201)
def create_company(payload: Company, user=Depends(require_admin), db: Database = Depends(get_db)):
    if db[COMPANY].find_one({"name": payload.name}):
        raise ValidationError("Company with this name already exists")

    doc = payload.model_dump(by_alias=True)
    doc["country"] = object_id(payload.country, "country id")
    _require_country(db, doc["country"])

    new_id = create_unique_document(db, COMPANY, doc, "Company with this name already exists")
    record_activity(db, "company:create", user, f"Created company: {payload.name}")
    return {"success": True, "data": _one(db, new_id)}


@router.put("/{company_id}")
def update_company(
    company_id: str,
    payload: CompanyUpdate,
    user=Depends(require_admin),
    db: Database = Depends(get_db),
):
    company = _get_or_404(db, company_id)
    updates = payload.model_dump(by_alias=True, exclude_unset=True)
    for required in ("name", "country", "isActive"):
        if updates.get(required) is None:
            updates.pop(required, None)

    name = updates.get("name")
    if name and name != company.get("name"):
        if db[COMPANY].find_one({"_id": {"$ne": company["_id"]}, "name": name}):
            raise ValidationError("Another company with this name already exists")

    if "country" in updates:
        updates["country"] = object_id(updates["country"], "country id")
        _require_country(db, updates["country"])

    updates["updatedAt"] = utcnow()
    db[COMPANY].update_one({"_id": company["_id"]}, {"$set": updates})
    return {"success": True, "data": _one(db, company["_id"])}


@router.delete("/{company_id}")
def delete_company(company_id: str, user=Depends(require_admin), db: Database = Depends(get_db)):
    company = _get_or_404(db, company_id)
    person_count = db[PERSON].count_documents({"company": company["_id"]})
    if person_count > 0:
        raise ConflictError(f"Cannot delete company with {person_count} people associated")

    db[COMPANY].delete_one({"_id": company["_id"]})
    record_activity(db, "company:delete", user, f"Deleted company: {company['name']}")
    return {"success": True, "data": {}}


@router.get("/{company_id}/people")
def get_company_people(company_id: str, db: Database = Depends(get_db)):
    people = _members(db, object_id(company_id, "company id"))
    return {"success": True, "count": len(people), "data": people}


def _set_member(db: Database, company_id: str, field: str, op: str, value: str) -> Dict[str, Any]:
    oid = object_id(company_id, "company id")
    result = db[COMPANY].find_one_and_update(
        {"_id": oid},
        {op: {field: value}, "$set": {"updatedAt": utcnow()}},
        projection={field: 1},
        return_document=ReturnDocument.AFTER,
    )
    if not result:
        raise NotFoundError("Company not found")
    return {"success": True, "data": result.get(field, [])}


@router.post("/{company_id}/ips")
def add_ip_address(
    company_id: str,
    payload: IpAddressPayload,
    user=Depends(require_admin),
    db: Database = Depends(get_db),
):
    return _set_member(db, company_id, "ipAddresses", "$addToSet", payload.ip_address)


@router.delete("/{company_id}/ips/{ip}")
def remove_ip_address(company_id: str, ip: str, user=Depends(require_admin), db: Database = Depends(get_db)):
    return _set_member(db, company_id, "ipAddresses", "$pull", ip)


@router.post("/{company_id}/subdomains")
def add_subdomain(
    company_id: str,
    payload: SubdomainPayload,
    user=Depends(require_admin),
    db: Database = Depends(get_db),
):
    return _set_member(db, company_id, "subdomains", "$addToSet", payload.subdomain)


@router.delete("/{company_id}/subdomains/{subdomain}")
def remove_subdomain(
    company_id: str,
    subdomain: str,
    user=Depends(require_admin),
    db: Database = Depends(get_db),
):
    return _set_member(db, company_id, "subdomains", "$pull", subdomain.lower())


@router.get("/{company_id}/export", dependencies=[Depends(export_limiter)])
def export_people(
    company_id: str,
    format: str = "json",
    user=Depends(require_admin),
    db: Database = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    fmt = format.lower()
    if fmt not in ("json", "csv", "pdf"):
        raise ValidationError("format must be one of json, csv, pdf")

    company = _get_or_404(db, company_id)
    people = list(db[PERSON].find({"company": company["_id"]}).sort(PEOPLE_ORDER))
    populate(db, people, (Reference("company", COMPANY, ("name",)), Reference("country", COUNTRY, ("name",))))
    rows = [to_dict(p) for p in people]

    if fmt == "json":
        return {"success": True, "data": rows}

    filename = f"{exports.safe_name(company.get('name'))}_people.{fmt}"
    headers = {"Content-Disposition": f'attachment; filename="{filename}"'}
    if fmt == "csv":
        return Response(exports.people_csv(rows), media_type="text/csv; charset=utf-8", headers=headers)

    populate(db, [company], (Reference("country", COUNTRY, ("name",)),))
    pdf = exports.people_pdf(to_dict(company), rows, storage_dir=settings.FILE_UPLOAD_PATH)
    return Response(pdf, media_type="application/pdf", headers=headers)
