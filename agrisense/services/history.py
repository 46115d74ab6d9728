"""Identification/diagnosis history and the plant and disease catalogs it references."""
from typing import Any, Dict, List, Optional

from agrisense.services import database as db


def record_identification(user_id: str, image_url: str, confidence: Optional[float] = None,
                          plant_id: Optional[str] = None) -> Dict[str, Any]:
    return db.insert_row("plant_identifications", {
        "user_id": user_id,
        "image_url": image_url,
        "confidence": confidence,
        "plant_id": plant_id,
    })


def list_identifications(user_id: str, limit: int = 20) -> List[Dict[str, Any]]:
    rows = db.select_rows("plant_identifications", filters={"user_id": user_id},
                          order_by="identified_at", ascending=False, limit=limit)
    return db.fetch_with_related(rows, "plants", "plant_id", "id", "plant")


def record_diagnosis(user_id: str, image_url: str, confidence: Optional[float] = None,
                     disease_id: Optional[str] = None) -> Dict[str, Any]:
    return db.insert_row("disease_diagnoses", {
        "user_id": user_id,
        "image_url": image_url,
        "confidence": confidence,
        "disease_id": disease_id,
    })


def list_diagnoses(user_id: str, limit: int = 20) -> List[Dict[str, Any]]:
    rows = db.select_rows("disease_diagnoses", filters={"user_id": user_id},
                          order_by="diagnosed_at", ascending=False, limit=limit)
    return db.fetch_with_related(rows, "diseases", "disease_id", "id", "disease")


def list_plants() -> List[Dict[str, Any]]:
    return db.select_rows("plants", order_by="name")


def list_diseases() -> List[Dict[str, Any]]:
    return db.select_rows("diseases", order_by="name")
