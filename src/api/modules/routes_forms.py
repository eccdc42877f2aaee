# routes_forms.py
# Form CRUD, status transitions, PDF download, approval email

import logging

from flask import Response, jsonify

from src.agents.notify_agent import send_approval_email
from src.api.dashboard import auth_required, bp, current_user, json_body
from src.core.errors import ValidationError
from src.core.security import rate_limit
from src.forms import lifecycle
from src.forms.document_renderer import render_form_pdf

log = logging.getLogger("forms.api")


@bp.route("/api/forms", methods=["POST"])
@auth_required
def api_create_form():
    form_id = lifecycle.create_form(json_body())
    return jsonify({"id": form_id}), 201


@bp.route("/api/forms")
@auth_required
def api_list_forms():
    return jsonify(lifecycle.list_forms())


@bp.route("/api/forms/my-forms")
@auth_required
def api_my_forms():
    name = current_user().get("name") or ""
    if not name:
        return jsonify([])
    return jsonify(lifecycle.list_forms(owner_name=name))


@bp.route("/api/forms/<int:form_id>")
@auth_required
def api_get_form(form_id):
    return jsonify(lifecycle.get_form(form_id))


@bp.route("/api/forms/<int:form_id>", methods=["PUT"])
@auth_required
def api_update_form(form_id):
    form = lifecycle.update_form(form_id, json_body(), actor=current_user())
    return jsonify({"message": "Form updated successfully", "form": form})


@bp.route("/api/forms/<int:form_id>", methods=["DELETE"])
@auth_required
def api_delete_form(form_id):
    lifecycle.delete_form(form_id)
    log.info("Form #%d deleted by %s", form_id, current_user().get("email", "?"),
             extra={"form_id": form_id})
    return jsonify({"message": "Form deleted successfully"})


# ── Transitions ─────────────────────────────────────────────────────────────

@bp.route("/api/forms/<int:form_id>/submit", methods=["POST"])
@auth_required
def api_submit_form(form_id):
    return jsonify(lifecycle.submit_form(form_id, actor=current_user()))


@bp.route("/api/forms/<int:form_id>/approve", methods=["POST"])
@auth_required
def api_approve_form(form_id):
    return jsonify(lifecycle.approve_form(form_id, actor=current_user()))


@bp.route("/api/forms/<int:form_id>/reject", methods=["POST"])
@auth_required
def api_reject_form(form_id):
    return jsonify(lifecycle.reject_form(form_id, actor=current_user()))


@bp.route("/api/forms/<int:form_id>/transition", methods=["POST"])
@auth_required
def api_transition_form(form_id):
    status = json_body().get("status")
    if not status:
        raise ValidationError("status is required", field="status")
    return jsonify(lifecycle.transition_form(form_id, status, actor=current_user()))


# ── Documents ───────────────────────────────────────────────────────────────

@bp.route("/api/forms/<int:form_id>/pdf")
@auth_required
@rate_limit("heavy")
def api_form_pdf(form_id):
    pdf = render_form_pdf(lifecycle.get_form(form_id))
    return Response(pdf, mimetype="application/pdf", headers={
        "Content-Disposition": f'inline; filename="form_{form_id}.pdf"',
        "Content-Length": str(len(pdf)),
    })


@bp.route("/api/forms/pdf-email", methods=["POST"])
@auth_required
@rate_limit("heavy")
def api_form_pdf_email():
    body = json_body()
    try:
        form_id = int(body.get("id"))
    except (TypeError, ValueError):
        raise ValidationError("id is required", field="id")
    result = send_approval_email(form_id, body.get("email"))
    return jsonify({"message": result["message"], "to": result["to"], "id": form_id})
