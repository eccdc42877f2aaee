"""
Form Status Lifecycle
=====================

    Draft ──submit──▶ Waiting For Approve ──approve──▶ Approved
                                        └──reject───▶ Rejected

Approved and Rejected are terminal. Only Draft rows can be deleted.

Policies (env):
  FORMS_EDIT_POLICY  any (default) | draft_only
                     any        — edits allowed in every status (managers add
                                  comments after submission)
                     draft_only — edits to non-Draft forms are InvalidStateError
  APPROVER_ROLES     comma list of roles allowed to approve/reject (admin,manager)
"""

import logging
import os

from src.core import db
from src.core.errors import (
    InvalidStateError, NotFoundError, PermissionDeniedError, ValidationError,
)
from src.forms.details import parse_details
from src.forms.form_types import (
    APPROVED, DRAFT, INITIAL_STATUSES, REJECTED, WAITING_FOR_APPROVE,
    resolve_form_type, resolve_status,
)

log = logging.getLogger("forms.lifecycle")

EDIT_POLICY_ANY = "any"
EDIT_POLICY_DRAFT_ONLY = "draft_only"

TRANSITIONS = {
    DRAFT: (WAITING_FOR_APPROVE,),
    WAITING_FOR_APPROVE: (APPROVED, REJECTED),
    APPROVED: (),
    REJECTED: (),
}
DECISIONS = (APPROVED, REJECTED)


def edit_policy() -> str:
    policy = os.environ.get("FORMS_EDIT_POLICY", EDIT_POLICY_ANY).strip().lower()
    return policy if policy in (EDIT_POLICY_ANY, EDIT_POLICY_DRAFT_ONLY) else EDIT_POLICY_ANY


def approver_roles() -> tuple:
    raw = os.environ.get("APPROVER_ROLES", "admin,manager")
    return tuple(r.strip().lower() for r in raw.split(",") if r.strip())


def _coerce_details(value) -> dict:
    if value is None:
        return {}
    if isinstance(value, dict):
        return value
    if isinstance(value, (str, bytes)):
        parsed = parse_details(value)
        if parsed or value.strip() in ("", b"", "{}", b"{}"):
            return parsed
    raise ValidationError("details must be an object", field="details")


def _actor_label(actor: dict | None) -> str:
    if not actor:
        return ""
    return actor.get("email") or actor.get("name") or str(actor.get("id", ""))


# ── Reads ────────────────────────────────────────────────────────────────────

def get_form(form_id: int) -> dict:
    form = db.get_form(form_id)
    if form is None:
        raise NotFoundError("Form not found")
    return form


def list_forms(owner_name: str = None) -> list:
    return db.list_forms(owner_name=owner_name)


# ── Writes ───────────────────────────────────────────────────────────────────

def create_form(payload: dict) -> int:
    """Create a form from an API payload. Returns the new id.

    Accepts form_type (or legacy form_name), owner_name (or user_name),
    department, details and an optional initial status.
    """
    payload = payload or {}
    raw_type = payload.get("form_type") or payload.get("form_name")
    form_type = resolve_form_type(raw_type)
    if form_type is None:
        raise ValidationError(
            f"Unknown form type: {raw_type}" if raw_type else "form_type is required",
            field="form_type")

    owner = (payload.get("owner_name") or payload.get("user_name") or "").strip()
    if not owner:
        raise ValidationError("owner_name is required", field="owner_name")

    raw_status = payload.get("status") or DRAFT
    status = resolve_status(raw_status)
    if status not in INITIAL_STATUSES:
        raise ValidationError(f"Invalid initial status: {raw_status}", field="status")

    details = _coerce_details(payload.get("details"))
    form_id = db.insert_form(form_type, owner, payload.get("department") or "",
                             details, status)
    log.info("Form #%d created (%s, %s)", form_id, form_type, status)
    return form_id


def update_form(form_id: int, fields: dict, actor: dict = None) -> dict:
    """Edit owner/department/details; a status value follows transition_form() rules.

    The status move is validated before anything is written, and the field
    edit and status change commit together or not at all.
    """
    fields = fields or {}
    current = get_form(form_id)

    if edit_policy() == EDIT_POLICY_DRAFT_ONLY and current["status"] != DRAFT:
        raise InvalidStateError("cannot edit non-draft form",
                                details={"status": current["status"]})

    raw_type = fields.get("form_type") or fields.get("form_name")
    if raw_type is not None:
        if resolve_form_type(raw_type) != resolve_form_type(current["form_type"]):
            raise ValidationError("form_type cannot be changed", field="form_type")

    changes = {}
    owner = fields.get("owner_name", fields.get("user_name"))
    if owner is not None:
        if not str(owner).strip():
            raise ValidationError("owner_name cannot be empty", field="owner_name")
        changes["owner_name"] = str(owner).strip()
    if "department" in fields:
        changes["department"] = fields.get("department") or ""
    if "details" in fields:
        changes["details"] = _coerce_details(fields.get("details"))

    target = _check_transition(current, fields["status"], actor) if fields.get("status") else None
    if not changes and target is None:
        return current

    if not db.update_form(form_id, changes, new_status=target,
                          expected_status=current["status"], actor=_actor_label(actor)):
        raise InvalidStateError("form status changed concurrently, reload and retry")
    if changes:
        log.info("Form #%d updated: %s", form_id, ", ".join(sorted(changes)))
    if target:
        log.info("Form #%d: %s → %s by %s", form_id, current["status"], target,
                 _actor_label(actor) or "system")
    return get_form(form_id)


def delete_form(form_id: int) -> None:
    db.delete_draft_form(form_id)


def _check_transition(form: dict, new_status, actor: dict = None) -> str | None:
    """Target status for a legal move, None when it is already there."""
    target = resolve_status(new_status)
    if target is None:
        raise ValidationError(f"Invalid status: {new_status}", field="status")

    current = resolve_status(form["status"]) or form["status"]
    if target == current:
        return None

    if target not in TRANSITIONS.get(current, ()):
        raise InvalidStateError(f"cannot move form from {current} to {target}",
                                details={"status": current, "requested": target})

    if target in DECISIONS and actor is not None:
        if (actor.get("role") or "").lower() not in approver_roles():
            raise PermissionDeniedError("Only approvers can approve or reject forms")
    return target


def transition_form(form_id: int, new_status: str, actor: dict = None) -> dict:
    """Move a form along the lifecycle. Same status is a no-op.

    actor is the caller's identity; approve/reject require one of
    APPROVER_ROLES. Internal callers may pass None to skip the role check.
    """
    form = get_form(form_id)
    target = _check_transition(form, new_status, actor)
    if target is None:
        return form

    if not db.set_form_status(form_id, target, form["status"], _actor_label(actor)):
        raise InvalidStateError("form status changed concurrently, reload and retry")

    log.info("Form #%d: %s → %s by %s", form_id, form["status"], target,
             _actor_label(actor) or "system")
    return get_form(form_id)


def submit_form(form_id: int, actor: dict = None) -> dict:
    return transition_form(form_id, WAITING_FOR_APPROVE, actor)


def approve_form(form_id: int, actor: dict = None) -> dict:
    return transition_form(form_id, APPROVED, actor)


def reject_form(form_id: int, actor: dict = None) -> dict:
    return transition_form(form_id, REJECTED, actor)
