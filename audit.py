import logging
from typing import Any, Dict, Optional

from database import create_document, serialize, to_object_id
from schemas import AuditLog

logger = logging.getLogger(__name__)


def record(db, action: str, user_id: Optional[str] = None, entity: Optional[str] = None,
           entity_id: Optional[str] = None, details: Optional[Dict[str, Any]] = None) -> None:
    """Append an audit entry. Never raises: a failed write is only logged."""
    try:
        entry = AuditLog(action=action, user_id=user_id, entity=entity, entity_id=entity_id, details=details)
        create_document(db, "auditlog", entry)
    except Exception:
        logger.exception("[AuditLog] could not record %s", action)


def list_logs(db, page: int = 1, page_size: int = 20) -> dict:
    page = max(1, page)
    page_size = min(50, max(10, page_size))
    cursor = db["auditlog"].find({}).sort([("created_at", -1), ("_id", -1)]).skip((page - 1) * page_size).limit(page_size)
    items = [serialize(doc) for doc in cursor]

    user_ids = {to_object_id(it["user_id"]) for it in items if it.get("user_id")}
    user_ids.discard(None)
    users = {}
    if user_ids:
        for u in db["user"].find({"_id": {"$in": list(user_ids)}}, {"email": 1, "name": 1}):
            users[str(u["_id"])] = {"id": str(u["_id"]), "email": u.get("email"), "name": u.get("name")}
    for it in items:
        it["user"] = users.get(it.get("user_id"))

    return {"items": items, "total": db["auditlog"].count_documents({}), "page": page, "pageSize": page_size}
