import logging
from typing import Any, Dict, List

from fastapi import APIRouter, Depends, File, Request, UploadFile

import storage
from activity import record_activity
from auth import require_admin
from config import Settings, get_settings
from database import COMPANY, COUNTRY, PERSON, Database, create_unique_document, get_db, object_id, utcnow
from errors import NotFoundError, ValidationError
from query import BOOLEAN, REFERENCE, Reference, ResourceSpec, run_list, serialize
from ratelimit import upload_limiter
from schemas import Person, PersonStatus, PersonUpdate

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/people", tags=["people"])


def add_full_name(db: Database, rows: List[Dict[str, Any]]) -> None:
    for row in rows:
        row["fullName"] = f"{row.get('firstName', '')} {row.get('lastName', '')}".strip()


COMPANY_REF = Reference("company", COMPANY, ("name",))
COUNTRY_REF = Reference("country", COUNTRY, ("name", "code", "capital"))

PEOPLE = ResourceSpec(
    collection=PERSON,
    default_sort="lastName",
    sort_fields=(
        "firstName", "lastName", "email", "position", "department", "city",
        "isActive", "lastActive", "createdAt", "updatedAt",
    ),
    search_fields=("firstName", "lastName", "email", "position", "department"),
    filters={"company": REFERENCE, "country": REFERENCE, "isActive": BOOLEAN},
    references=(COMPANY_REF, COUNTRY_REF),
    decorate=add_full_name,
)

# single-record view shows a little more of the company
PERSON_DETAIL_REFS = (Reference("company", COMPANY, ("name", "industry", "website")), COUNTRY_REF)

PEOPLE_ORDER = [("lastName", 1), ("firstName", 1), ("_id", 1)]


def _get_or_404(db: Database, person_id: str) -> Dict[str, Any]:
    person = db[PERSON].find_one({"_id": object_id(person_id, "person id")})
    if not person:
        raise NotFoundError("Person not found")
    return person


def _require(db: Database, collection: str, oid, label: str) -> None:
    if not db[collection].find_one({"_id": oid}, {"_id": 1}):
        raise NotFoundError(f"{label} not found")


def _one(db: Database, oid) -> Dict[str, Any]:
    return serialize(db, PEOPLE, [db[PERSON].find_one({"_id": oid})])[0]


def set_active(updates: Dict[str, Any], is_active: bool) -> Dict[str, Any]:
    """``lastActive`` follows the flag: stamped when active, cleared when not."""
    updates["isActive"] = is_active
    updates["lastActive"] = utcnow() if is_active else None
    return updates


@router.get("")
def list_people(request: Request, db: Database = Depends(get_db)):
    return run_list(db, PEOPLE, request.query_params)


@router.get("/country/{country_id}")
def get_people_by_country(country_id: str, db: Database = Depends(get_db)):
    docs = list(db[PERSON].find({"country": object_id(country_id, "country id")}).sort(PEOPLE_ORDER))
    data = serialize(db, PEOPLE, docs, references=(COMPANY_REF,))
    return {"success": True, "count": len(data), "data": data}


@router.get("/company/{company_id}")
def get_people_by_company(company_id: str, db: Database = Depends(get_db)):
    docs = list(db[PERSON].find({"company": object_id(company_id, "company id")}).sort(PEOPLE_ORDER))
    data = serialize(db, PEOPLE, docs, references=(COUNTRY_REF,))
    return {"success": True, "count": len(data), "data": data}


@router.get("/{person_id}")
def get_person(person_id: str, db: Database = Depends(get_db)):
    person = _get_or_404(db, person_id)
    return {"success": True, "data": serialize(db, PEOPLE, [person], references=PERSON_DETAIL_REFS)[0]}


@router.post("", status_code=201)
def create_person(payload: Person, user=Depends(require_admin), db: Database = Depends(get_db)):
    if db[PERSON].find_one({"email": payload.email}):
        raise ValidationError("Person with this email already exists")

    doc = payload.model_dump(by_alias=True)
    doc["company"] = object_id(payload.company, "company id")
    doc["country"] = object_id(payload.country, "country id")
    _require(db, COMPANY, doc["company"], "Company")
    _require(db, COUNTRY, doc["country"], "Country")

    new_id = create_unique_document(db, PERSON, doc, "Person with this email already exists")
    record_activity(
        db, "person:create", user, f"Created person: {payload.first_name} {payload.last_name}"
    )
    return {"success": True, "data": _one(db, new_id)}


@router.put("/{person_id}")
def update_person(
    person_id: str,
    payload: PersonUpdate,
    user=Depends(require_admin),
    db: Database = Depends(get_db),
):
    person = _get_or_404(db, person_id)
    updates = payload.model_dump(by_alias=True, exclude_unset=True)
    for required in ("firstName", "lastName", "email", "company", "country", "isActive"):
        if updates.get(required) is None:
            updates.pop(required, None)

    email = updates.get("email")
    if email and email != person.get("email"):
        if db[PERSON].find_one({"_id": {"$ne": person["_id"]}, "email": email}):
            raise ValidationError("Another person with this email already exists")

    if "company" in updates:
        updates["company"] = object_id(updates["company"], "company id")
        _require(db, COMPANY, updates["company"], "Company")
    if "country" in updates:
        updates["country"] = object_id(updates["country"], "country id")
        _require(db, COUNTRY, updates["country"], "Country")
    if "isActive" in updates:
        set_active(updates, updates["isActive"])

    updates["updatedAt"] = utcnow()
    db[PERSON].update_one({"_id": person["_id"]}, {"$set": updates})
    return {"success": True, "data": _one(db, person["_id"])}


@router.patch("/{person_id}/status")
def update_person_status(
    person_id: str,
    payload: PersonStatus,
    user=Depends(require_admin),
    db: Database = Depends(get_db),
):
    person = _get_or_404(db, person_id)
    updates = set_active({"updatedAt": utcnow()}, payload.is_active)
    db[PERSON].update_one({"_id": person["_id"]}, {"$set": updates})
    return {"success": True, "data": _one(db, person["_id"])}


@router.put("/{person_id}/photo", dependencies=[Depends(upload_limiter)])
async def person_photo_upload(
    person_id: str,
    file: UploadFile = File(...),
    user=Depends(require_admin),
    db: Database = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    person = _get_or_404(db, person_id)
    filename = await storage.save_image(file, f"person_{person['_id']}", settings)
    if person.get("photo") and person["photo"] != filename:
        storage.remove_file(settings, person["photo"])

    # updatedAt is touched so clients can bust cached images
    db[PERSON].update_one({"_id": person["_id"]}, {"$set": {"photo": filename, "updatedAt": utcnow()}})
    return {"success": True, "data": _one(db, person["_id"])}


@router.delete("/{person_id}")
def delete_person(
    person_id: str,
    user=Depends(require_admin),
    db: Database = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    person = _get_or_404(db, person_id)
    db[PERSON].delete_one({"_id": person["_id"]})
    # the file goes only after the record is gone
    storage.remove_file(settings, person.get("photo"))
    record_activity(
        db, "person:delete", user, f"Deleted person: {person.get('firstName')} {person.get('lastName')}"
    )
    return {"success": True, "data": {}}
