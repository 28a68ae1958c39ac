"""
Diploma issuance routes.

Drives the session's IssuanceWorkflow one step at a time:

    recipients -> asset -> confirm -> mint -> (poll status) -> reset

Handles:
- GET    /issuance                       - Current workflow snapshot
- POST   /issuance/recipients            - Replace the selection
- POST   /issuance/recipients/<id>       - Add one student
- DELETE /issuance/recipients/<id>       - Remove one student
- POST   /issuance/recipients/done       - Continue to asset selection
- GET    /issuance/templates             - School templates to choose from
- POST   /issuance/asset/template        - Use a template
- POST   /issuance/asset/image           - Use an uploaded image
- POST   /issuance/confirm               - Continue to confirmation (+ quote)
- GET    /issuance/quote                 - Fees for the current selection
- POST   /issuance/back                  - Step back
- POST   /issuance/mint                  - Start minting (background thread)
- GET    /issuance/status                - Poll minting progress
- POST   /issuance/cancel                - Abandon before minting
- POST   /issuance/reset                 - Start a new batch
"""

from flask import Blueprint, current_app, g, request

from models.issuance import IssuanceState
from logging_config import get_logger

from .guards import current_workflow, login_required, session_storage


# Module logger
logger = get_logger(__name__)

issuance_bp = Blueprint("issuance", __name__, url_prefix="/issuance")

LOVELACE_PER_ADA = 1_000_000
MAX_BATCH_SIZE = 500


def _snapshot_response(status_code: int = 200):
    return {"workflow": current_workflow().snapshot().to_dict()}, status_code


@issuance_bp.route("", methods=["GET"])
@login_required
def overview():
    return _snapshot_response()


# =============================================================================
# RECIPIENTS
# =============================================================================

@issuance_bp.route("/recipients", methods=["POST"])
@login_required
def set_recipients():
    data = request.get_json(silent=True) or {}
    student_ids = data.get("student_ids")
    if not isinstance(student_ids, list) or not all(isinstance(s, str) for s in student_ids):
        return {"error": "student_ids must be a list of student ids.", "field": "student_ids"}, 400
    if len(student_ids) > MAX_BATCH_SIZE:
        return {"error": f"At most {MAX_BATCH_SIZE} students per batch.", "field": "student_ids"}, 400

    students = session_storage().get_students(student_ids)
    found = {s.user_id for s in students}
    missing = [s for s in student_ids if s not in found]
    if missing:
        return {"error": "Some selected students were not found.", "missing": missing}, 400

    count = current_workflow().set_recipients(students)
    logger.info(f"Recipient selection replaced: {count} student(s)")
    return _snapshot_response()


@issuance_bp.route("/recipients/done", methods=["POST"])
@login_required
def recipients_done():
    current_workflow().proceed_to_asset()
    return _snapshot_response()


@issuance_bp.route("/recipients/<student_id>", methods=["POST"])
@login_required
def add_recipient(student_id: str):
    student = session_storage().get_student(student_id)
    if student is None:
        return {"error": "Student not found."}, 404

    added = current_workflow().add_recipient(student)
    response, status_code = _snapshot_response()
    response["added"] = added
    return response, status_code


@issuance_bp.route("/recipients/<student_id>", methods=["DELETE"])
@login_required
def remove_recipient(student_id: str):
    removed = current_workflow().remove_recipient(student_id)
    response, status_code = _snapshot_response()
    response["removed"] = removed
    return response, status_code


# =============================================================================
# ASSET
# =============================================================================

@issuance_bp.route("/templates", methods=["GET"])
@login_required
def templates():
    rows = session_storage().list_templates(g.auth_context.school_id)
    return {"templates": [{"id": t.id, "name": t.name} for t in rows]}


@issuance_bp.route("/asset/template", methods=["POST"])
@login_required
def choose_template():
    data = request.get_json(silent=True) or request.form.to_dict()
    template_id = data.get("template_id") or ""
    if not isinstance(template_id, str):
        return {"error": "template_id must be a string.", "field": "template_id"}, 400
    template_id = template_id.strip()
    if not template_id:
        return {"error": "template_id is required.", "field": "template_id"}, 400

    template = session_storage().get_template(template_id)
    if template is None:
        return {"error": "Template not found."}, 404

    current_workflow().choose_template(template)
    return _snapshot_response()


@issuance_bp.route("/asset/image", methods=["POST"])
@login_required
def upload_image():
    file = request.files.get("image")
    if file is None or not file.filename:
        return {"error": "No image file provided.", "field": "image"}, 400

    current_workflow().upload_image(file.filename, file.read())
    return _snapshot_response()


@issuance_bp.route("/confirm", methods=["POST"])
@login_required
def confirm():
    workflow = current_workflow()
    workflow.proceed_to_confirm()
    response, status_code = _snapshot_response()
    response["quote"] = workflow.quote_fees().to_display()
    return response, status_code


@issuance_bp.route("/quote", methods=["GET"])
@login_required
def quote():
    return {"quote": current_workflow().quote_fees().to_display()}


@issuance_bp.route("/back", methods=["POST"])
@login_required
def back():
    current_workflow().go_back()
    return _snapshot_response()


# =============================================================================
# MINTING
# =============================================================================

@issuance_bp.route("/mint", methods=["POST"])
@login_required
def mint():
    """
    Start minting the confirmed batch.

    Preconditions (state, wallet, balance) are checked here and fail with
    a JSON error; the batch itself runs on a background thread.
    """
    issuance_service = current_app.config["ISSUANCE_SERVICE"]
    minimum_lovelace = int(current_app.config["MIN_WALLET_BALANCE_ADA"] * LOVELACE_PER_ADA)

    batch_id = issuance_service.start(current_workflow(), g.session_state.wallet, minimum_lovelace)
    logger.info(f"Mint requested for batch {batch_id[:8]}")

    response, _ = _snapshot_response()
    response["batch_id"] = batch_id
    return response, 202


@issuance_bp.route("/status", methods=["GET"])
@login_required
def status():
    snapshot = current_workflow().snapshot()
    issuance_service = current_app.config["ISSUANCE_SERVICE"]

    return {
        "workflow": snapshot.to_dict(),
        "complete": snapshot.state in (IssuanceState.COMPLETED, IssuanceState.FAILED, IssuanceState.CANCELLED),
        "error": snapshot.state is IssuanceState.FAILED,
        "running": issuance_service.is_batch_running(snapshot.batch_id),
    }


@issuance_bp.route("/cancel", methods=["POST"])
@login_required
def cancel():
    current_workflow().cancel()
    return _snapshot_response()


@issuance_bp.route("/reset", methods=["POST"])
@login_required
def reset():
    data = request.get_json(silent=True) or {}
    current_workflow().reset(retain_unissued=bool(data.get("retain_unissued", False)))
    return _snapshot_response()
