from typing import Any, Dict, Optional

from agrisense.services import database as db

EDITABLE_FIELDS = ("full_name", "bio", "location", "phone", "avatar_url")
ROLES = ("farmer", "expert", "admin")

QUICK_ACTIONS = [
    {"title": "Identify Plant", "description": "Take or upload a photo to identify plants", "path": "/identify-plant"},
    {"title": "Diagnose Disease", "description": "Detect plant diseases from leaf images", "path": "/diagnose-disease"},
    {"title": "Community Forum", "description": "Connect with other farmers", "path": "/forum"},
    {"title": "Weather & Tips", "description": "Get localized farming advice", "path": "/weather"},
]


def get_profile(user_id: str) -> Optional[Dict[str, Any]]:
    return db.select_one("profiles", {"user_id": user_id})


def update_profile(user_id: str, fields: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    changes = {k: v for k, v in fields.items() if k in EDITABLE_FIELDS}
    if not changes:
        return get_profile(user_id)
    rows = db.update_rows("profiles", changes, {"user_id": user_id})
    return rows[0] if rows else get_profile(user_id)


def has_role(user_id: str, role: str) -> bool:
    if role not in ROLES:
        raise ValueError(f"Unknown role: {role}")
    return bool(db.call_function("has_role", {"_user_id": user_id, "_role": role}))


def dashboard(user_id: str) -> Dict[str, Any]:
    profile = get_profile(user_id)
    return {
        "profile": profile,
        "displayName": (profile or {}).get("full_name") or "Farmer",
        "identifications": db.count_rows("plant_identifications", {"user_id": user_id}),
        "diagnoses": db.count_rows("disease_diagnoses", {"user_id": user_id}),
        "quickActions": QUICK_ACTIONS,
    }
