"""
Student roster routes.

Handles:
- GET    /students        - List students (newest first)
- POST   /students        - Create a student profile
- GET    /students/<id>   - One student with their diplomas
- PATCH  /students/<id>   - Update editable fields
- DELETE /students/<id>   - Remove a student profile
"""

import uuid

import bleach
from flask import Blueprint, request

from models.records import StudentProfile
from services.storage_service import STUDENT_PROFILE_EDITABLE
from logging_config import get_logger

from .guards import login_required, session_storage


# Module logger
logger = get_logger(__name__)

students_bp = Blueprint("students", __name__, url_prefix="/students")

MAX_FIELD_LENGTH = 200


def _sanitize_text(text: str, max_length: int = None) -> str:
    """Sanitize user input text."""
    if not text:
        return ""
    text = str(text).strip()
    text = bleach.clean(text, tags=[], strip=True)
    if max_length and len(text) > max_length:
        text = text[:max_length]
    return text


def _editable_fields(data: dict) -> dict:
    return {
        key: _sanitize_text(data[key], MAX_FIELD_LENGTH)
        for key in STUDENT_PROFILE_EDITABLE
        if key in data
    }


@students_bp.route("", methods=["GET"])
@login_required
def list_students():
    students = session_storage().list_students()
    return {"students": [s.to_dict() for s in students], "count": len(students)}


@students_bp.route("", methods=["POST"])
@login_required
def create_student():
    data = request.get_json(silent=True) or request.form.to_dict()
    fields = _editable_fields(data)
    if not fields.get("full_name"):
        return {"error": "Full name is required.", "field": "full_name"}, 400

    user_id = _sanitize_text(data.get("user_id", ""), 64) or str(uuid.uuid4())
    student = session_storage().create_student(StudentProfile(user_id=user_id, **fields))
    logger.info(f"Student created: {student.user_id}")
    return {"student": student.to_dict()}, 201


@students_bp.route("/<student_id>", methods=["GET"])
@login_required
def get_student(student_id: str):
    storage = session_storage()
    student = storage.get_student(student_id)
    if student is None:
        return {"error": "Student not found."}, 404

    diplomas = storage.list_diplomas_for_student(student_id)
    return {"student": student.to_dict(), "diplomas": [d.to_dict() for d in diplomas]}


@students_bp.route("/<student_id>", methods=["PATCH"])
@login_required
def update_student(student_id: str):
    data = request.get_json(silent=True) or request.form.to_dict()
    fields = _editable_fields(data)
    if not fields:
        return {"error": "No editable fields supplied."}, 400
    if "full_name" in fields and not fields["full_name"]:
        return {"error": "Full name cannot be empty.", "field": "full_name"}, 400

    student = session_storage().update_student(student_id, fields)
    return {"student": student.to_dict()}


@students_bp.route("/<student_id>", methods=["DELETE"])
@login_required
def delete_student(student_id: str):
    session_storage().delete_student(student_id)
    logger.info(f"Student deleted: {student_id}")
    return {"deleted": True}
