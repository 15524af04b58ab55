import logging
from typing import Any, Dict, List

from fastapi import APIRouter, Depends, Request

from activity import record_activity
from auth import require_admin
from companies import COMPANIES
from database import COMPANY, COUNTRY, PERSON, Database, create_unique_document, get_db, object_id, session_kwargs, utcnow
from errors import ConflictError, NotFoundError, ValidationError
from people import PEOPLE
from query import EXACT, ResourceSpec, run_list, serialize
from schemas import Country, CountryUpdate

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/countries", tags=["countries"])


def add_counts(db: Database, rows: List[Dict[str, Any]]) -> None:
    for row in rows:
        oid = object_id(row["id"])
        row["companyCount"] = db[COMPANY].count_documents({"country": oid})
        row["personCount"] = db[PERSON].count_documents({"country": oid})


COUNTRIES = ResourceSpec(
    collection=COUNTRY,
    default_sort="name",
    sort_fields=("name", "code", "region", "capital", "population", "isActive", "createdAt", "updatedAt"),
    search_fields=("name", "code"),
    filters={"region": EXACT},
    decorate=add_counts,
)


def _get_or_404(db: Database, country_id: str) -> Dict[str, Any]:
    country = db[COUNTRY].find_one({"_id": object_id(country_id, "country id")})
    if not country:
        raise NotFoundError("Country not found")
    return country


def _check_unique(db: Database, name=None, code=None, exclude=None) -> None:
    clauses = []
    if name:
        clauses.append({"name": name})
    if code:
        clauses.append({"code": code.upper()})
    if not clauses:
        return
    filt: Dict[str, Any] = {"$or": clauses}
    if exclude is not None:
        filt["_id"] = {"$ne": exclude}
    if db[COUNTRY].find_one(filt):
        if exclude is None:
            raise ValidationError("Country with this name or code already exists")
        raise ValidationError("Another country with this name or code already exists")


@router.get("")
def list_countries(request: Request, db: Database = Depends(get_db)):
    return run_list(db, COUNTRIES, request.query_params)


@router.get("/{country_id}")
def get_country(country_id: str, db: Database = Depends(get_db)):
    country = _get_or_404(db, country_id)
    return {"success": True, "data": serialize(db, COUNTRIES, [country])[0]}


@router.post("", status_code=201)
def create_country(payload: Country, user=Depends(require_admin), db: Database = Depends(get_db)):
    _check_unique(db, name=payload.name, code=payload.code)
    new_id = create_unique_document(db, COUNTRY, payload, "Country with this name or code already exists")
    record_activity(db, "country:create", user, f"Created country: {payload.name}")
    country = db[COUNTRY].find_one({"_id": new_id})
    return {"success": True, "data": serialize(db, COUNTRIES, [country])[0]}


@router.put("/{country_id}")
def update_country(
    country_id: str,
    payload: CountryUpdate,
    user=Depends(require_admin),
    db: Database = Depends(get_db),
):
    country = _get_or_404(db, country_id)
    updates = payload.model_dump(by_alias=True, exclude_unset=True)
    for required in ("name", "code", "isActive"):
        if updates.get(required) is None:
            updates.pop(required, None)

    name = updates.get("name") if updates.get("name") != country.get("name") else None
    code = updates.get("code") if updates.get("code") != country.get("code") else None
    _check_unique(db, name=name, code=code, exclude=country["_id"])

    updates["updatedAt"] = utcnow()
    db[COUNTRY].update_one({"_id": country["_id"]}, {"$set": updates})
    country = db[COUNTRY].find_one({"_id": country["_id"]})
    return {"success": True, "data": serialize(db, COUNTRIES, [country])[0]}


@router.delete("/{country_id}")
def delete_country(
    country_id: str,
    force: str = "",
    user=Depends(require_admin),
    db: Database = Depends(get_db),
):
    country = _get_or_404(db, country_id)
    oid = country["_id"]
    company_count = db[COMPANY].count_documents({"country": oid})
    person_count = db[PERSON].count_documents({"country": oid})
    forced = force.strip().lower() == "true"

    if not (company_count or person_count):
        db[COUNTRY].delete_one({"_id": oid})
        record_activity(db, "country:delete", user, f"Deleted country: {country['name']}")
        return {"success": True, "data": {}}

    if not forced:
        raise ConflictError(
            f"Cannot delete country with {company_count} companies and {person_count} people associated"
        )

    def cascade(session):
        kw = session_kwargs(session)
        companies = db[COMPANY].delete_many({"country": oid}, **kw)
        people = db[PERSON].delete_many({"country": oid}, **kw)
        db[COUNTRY].delete_one({"_id": oid}, **kw)
        return companies.deleted_count, people.deleted_count

    companies_deleted, people_deleted = db.run_multi_step(cascade)
    logger.info(
        "Force deleted country %s with %d companies and %d people",
        oid, companies_deleted, people_deleted,
    )
    record_activity(
        db, "country:delete", user,
        f"Deleted country: {country['name']} with {companies_deleted} companies and {people_deleted} people",
        priority=1,
    )
    return {
        "success": True,
        "data": {},
        "meta": {"companiesDeleted": companies_deleted, "peopleDeleted": people_deleted},
    }


@router.get("/{country_id}/companies")
def get_country_companies(country_id: str, db: Database = Depends(get_db)):
    oid = object_id(country_id, "country id")
    docs = list(db[COMPANY].find({"country": oid}).sort([("name", 1), ("_id", 1)]))
    data = serialize(db, COMPANIES, docs)
    return {"success": True, "count": len(data), "data": data}


@router.get("/{country_id}/people")
def get_country_people(country_id: str, db: Database = Depends(get_db)):
    oid = object_id(country_id, "country id")
    docs = list(db[PERSON].find({"country": oid}).sort([("lastName", 1), ("firstName", 1), ("_id", 1)]))
    data = serialize(db, PEOPLE, docs)
    return {"success": True, "count": len(data), "data": data}
