import logging
from typing import Any, Dict

from fastapi import APIRouter, Depends

import storage
from activity import record_activity
from auth import password_fields, public_user, require_admin
from config import Settings, get_settings
from database import ACTIVITY, SESSION, USER, Database, create_unique_document, get_db, object_id, session_kwargs, utcnow
from errors import NotFoundError, ValidationError
from schemas import User, UserCreate, UserUpdate

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/users", tags=["users"], dependencies=[Depends(require_admin)])


@router.get("")
def list_users(db: Database = Depends(get_db)):
    users = [public_user(u) for u in db[USER].find().sort([("lastName", 1), ("firstName", 1), ("_id", 1)])]
    return {"success": True, "count": len(users), "data": users}


@router.post("", status_code=201)
def create_user(payload: UserCreate, db: Database = Depends(get_db)):
    if db[USER].find_one({"email": payload.email}):
        raise ValidationError("A user with that email already exists")
    doc = User(**payload.model_dump(exclude={"password"})).model_dump(by_alias=True)
    doc.update(password_fields(payload.password))
    new_id = create_unique_document(db, USER, doc, "A user with that email already exists")
    return {"success": True, "data": public_user(db[USER].find_one({"_id": new_id}))}


@router.put("/{user_id}")
def update_user(user_id: str, payload: UserUpdate, db: Database = Depends(get_db)):
    oid = object_id(user_id, "user id")
    if not db[USER].find_one({"_id": oid}):
        raise NotFoundError(f"User not found with id of {user_id}")

    updates = payload.model_dump(by_alias=True, exclude_none=True, exclude={"password"})
    if "email" in updates:
        if db[USER].find_one({"email": updates["email"], "_id": {"$ne": oid}}):
            raise ValidationError("Another user already uses that email")
    if payload.password:
        updates.update(password_fields(payload.password))
    updates["updatedAt"] = utcnow()
    db[USER].update_one({"_id": oid}, {"$set": updates})
    return {"success": True, "data": public_user(db[USER].find_one({"_id": oid}))}


@router.delete("/{user_id}")
def delete_user(
    user_id: str,
    current: Dict[str, Any] = Depends(require_admin),
    db: Database = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    oid = object_id(user_id, "user id")

    def remove(session) -> Dict[str, Any]:
        kw = session_kwargs(session)
        user = db[USER].find_one({"_id": oid}, **kw)
        if not user:
            raise NotFoundError(f"User not found with id of {user_id}")
        if user.get("role") == "admin" and db[USER].count_documents({"role": "admin"}, **kw) <= 1:
            raise ValidationError("Cannot delete the last admin user")

        db[ACTIVITY].delete_many({"user": {"$in": [str(oid), user.get("email")]}}, **kw)
        db[SESSION].delete_many({"userId": oid}, **kw)
        db[USER].delete_one({"_id": oid}, **kw)
        return user

    user = db.run_multi_step(remove)

    # the file goes only after the records are gone
    storage.remove_file(settings, user.get("photo"))
    record_activity(db, "user:delete", current, f"Deleted user: {user['email']} ({oid})", priority=1)
    return {"success": True, "data": {}}
