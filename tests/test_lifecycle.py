"""Tests for the form store and status lifecycle."""

import json

import pytest

from src.core import db
from src.core.errors import (
    InvalidStateError, NotFoundError, PermissionDeniedError, ValidationError,
)
from src.forms import lifecycle


def _create(details=None, status=None, form_type="PurchaseRequest", owner="Nok Pimchanok"):
    payload = {"form_type": form_type, "owner_name": owner, "department": "Finance",
               "details": details or {"items": []}}
    if status:
        payload["status"] = status
    return lifecycle.create_form(payload)


ADMIN = {"id": 1, "email": "admin@newlywedsfoods.co.th", "name": "Portal Admin", "role": "admin"}
MANAGER = {"id": 2, "email": "manager@newlywedsfoods.co.th", "name": "Line Manager", "role": "manager"}
STAFF = {"id": 3, "email": "nok@newlywedsfoods.co.th", "name": "Nok Pimchanok", "role": "user"}


# ─── Create / read ──────────────────────────────────────────────────────────

class TestCreate:
    def test_defaults_to_draft(self):
        form = lifecycle.get_form(_create())
        assert form["status"] == "Draft"
        assert form["form_type"] == "PurchaseRequest"
        assert form["request_date"]

    def test_initial_waiting_for_approve(self):
        form = lifecycle.get_form(_create(status="Waiting For Approve"))
        assert form["status"] == "Waiting For Approve"

    def test_status_alias_accepted(self):
        form = lifecycle.get_form(_create(status="WaitingForApprove"))
        assert form["status"] == "Waiting For Approve"

    def test_cannot_create_approved(self):
        with pytest.raises(ValidationError) as exc:
            _create(status="Approved")
        assert exc.value.field == "status"

    def test_legacy_field_names(self):
        form_id = lifecycle.create_form({"form_name": "Travel Request", "user_name": "Somchai",
                                         "details": {}})
        form = lifecycle.get_form(form_id)
        assert form["form_type"] == "TravelRequest"
        assert form["owner_name"] == "Somchai"

    def test_missing_form_type(self):
        with pytest.raises(ValidationError) as exc:
            lifecycle.create_form({"owner_name": "x", "details": {}})
        assert exc.value.field == "form_type"

    def test_unknown_form_type(self):
        with pytest.raises(ValidationError):
            lifecycle.create_form({"form_type": "LeaveRequest", "owner_name": "x"})

    def test_missing_owner(self):
        with pytest.raises(ValidationError) as exc:
            lifecycle.create_form({"form_type": "PurchaseRequest", "owner_name": "  "})
        assert exc.value.field == "owner_name"

    def test_details_json_string_accepted(self):
        form = lifecycle.get_form(_create(details='{"remarks": "hi"}'))
        assert form["details"] == {"remarks": "hi"}

    def test_details_must_be_object(self):
        with pytest.raises(ValidationError):
            _create(details=[1, 2, 3])

    def test_get_unknown(self):
        with pytest.raises(NotFoundError):
            lifecycle.get_form(9999)

    def test_details_round_trip(self, sample_major_capital):
        form_id = _create(details=sample_major_capital, form_type="MajorCapitalRequest")
        assert lifecycle.get_form(form_id)["details"] == sample_major_capital

    def test_details_round_trip_after_update(self, sample_travel_request):
        form_id = _create()
        lifecycle.update_form(form_id, {"details": sample_travel_request})
        stored = lifecycle.get_form(form_id)["details"]
        assert json.dumps(stored, sort_keys=True) == json.dumps(sample_travel_request, sort_keys=True)


class TestListing:
    def test_newest_first(self):
        first, second, third = _create(), _create(), _create()
        ids = [f["id"] for f in lifecycle.list_forms()]
        assert ids == [third, second, first]

    def test_filter_by_owner(self):
        mine = _create(owner="Nok Pimchanok")
        _create(owner="Somebody Else")
        assert [f["id"] for f in lifecycle.list_forms(owner_name="Nok Pimchanok")] == [mine]


# ─── Delete ─────────────────────────────────────────────────────────────────

class TestDelete:
    def test_delete_draft(self):
        form_id = _create()
        lifecycle.delete_form(form_id)
        with pytest.raises(NotFoundError):
            lifecycle.get_form(form_id)

    @pytest.mark.parametrize("path", [
        ["Waiting For Approve"],
        ["Waiting For Approve", "Approved"],
        ["Waiting For Approve", "Rejected"],
    ])
    def test_delete_non_draft_rejected(self, path):
        form_id = _create()
        for status in path:
            lifecycle.transition_form(form_id, status)
        with pytest.raises(InvalidStateError):
            lifecycle.delete_form(form_id)
        assert lifecycle.get_form(form_id)["status"] == path[-1]

    def test_delete_unknown(self):
        with pytest.raises(NotFoundError):
            lifecycle.delete_form(424242)

    def test_ids_never_reused(self):
        a = _create()
        b = _create()
        lifecycle.delete_form(b)
        c = _create()
        assert c not in (a, b)
        assert c > b


# ─── Update / edit policy ───────────────────────────────────────────────────

class TestUpdate:
    def test_update_fields(self):
        form_id = _create()
        form = lifecycle.update_form(form_id, {"department": "IT", "details": {"remarks": "x"}})
        assert form["department"] == "IT"
        assert form["details"] == {"remarks": "x"}

    def test_form_type_cannot_change(self):
        form_id = _create()
        with pytest.raises(ValidationError):
            lifecycle.update_form(form_id, {"form_type": "TravelRequest"})

    def test_same_form_type_alias_ok(self):
        form_id = _create()
        lifecycle.update_form(form_id, {"form_type": "Purchase Request", "department": "HR"})
        assert lifecycle.get_form(form_id)["department"] == "HR"

    def test_any_policy_allows_editing_submitted(self):
        form_id = _create(status="Waiting For Approve")
        form = lifecycle.update_form(form_id, {"details": {"depManagerComment": "ok"}})
        assert form["details"]["depManagerComment"] == "ok"

    def test_draft_only_policy(self, monkeypatch):
        monkeypatch.setenv("FORMS_EDIT_POLICY", "draft_only")
        draft = _create()
        lifecycle.update_form(draft, {"department": "IT"})
        submitted = _create(status="Waiting For Approve")
        with pytest.raises(InvalidStateError):
            lifecycle.update_form(submitted, {"department": "IT"})

    def test_unknown_policy_falls_back_to_any(self, monkeypatch):
        monkeypatch.setenv("FORMS_EDIT_POLICY", "whatever")
        assert lifecycle.edit_policy() == "any"

    def test_status_in_update_uses_transition_rules(self):
        form_id = _create()
        with pytest.raises(InvalidStateError):
            lifecycle.update_form(form_id, {"status": "Approved"}, actor=ADMIN)
        form = lifecycle.update_form(form_id, {"status": "Waiting For Approve"}, actor=STAFF)
        assert form["status"] == "Waiting For Approve"

    def test_rejected_status_leaves_fields_untouched(self):
        form_id = _create(details={"grandTotal": 100}, status="Waiting For Approve")
        with pytest.raises(InvalidStateError):
            lifecycle.update_form(form_id, {"details": {"grandTotal": 999},
                                            "department": "IT", "status": "Draft"}, actor=STAFF)
        form = lifecycle.get_form(form_id)
        assert form["details"] == {"grandTotal": 100}
        assert form["department"] == "Finance"
        assert form["status"] == "Waiting For Approve"

    def test_forbidden_decision_leaves_fields_untouched(self):
        form_id = _create(details={"grandTotal": 100}, status="Waiting For Approve")
        with pytest.raises(PermissionDeniedError):
            lifecycle.update_form(form_id, {"details": {"grandTotal": 1},
                                            "status": "Approved"}, actor=STAFF)
        assert lifecycle.get_form(form_id)["details"] == {"grandTotal": 100}

    def test_fields_and_status_change_together(self):
        form_id = _create(details={"grandTotal": 100})
        form = lifecycle.update_form(form_id, {"details": {"grandTotal": 150},
                                               "status": "Waiting For Approve"}, actor=STAFF)
        assert form["details"] == {"grandTotal": 150}
        assert form["status"] == "Waiting For Approve"
        assert form["status_changed_by"] == STAFF["email"]

    def test_stale_status_writes_nothing(self):
        form_id = _create(details={"grandTotal": 100})
        # expected status no longer matches the row, so the field edit is dropped too
        assert db.update_form(form_id, {"details": {"grandTotal": 5}},
                              new_status="Waiting For Approve",
                              expected_status="Rejected") is False
        form = lifecycle.get_form(form_id)
        assert form["details"] == {"grandTotal": 100}
        assert form["status"] == "Draft"

    def test_update_unknown(self):
        with pytest.raises(NotFoundError):
            lifecycle.update_form(9999, {"department": "x"})


# ─── Transitions ────────────────────────────────────────────────────────────

class TestTransitions:
    def test_submit_then_approve(self):
        form_id = _create()
        lifecycle.submit_form(form_id, actor=STAFF)
        form = lifecycle.approve_form(form_id, actor=MANAGER)
        assert form["status"] == "Approved"
        assert form["status_changed_by"] == MANAGER["email"]
        assert form["status_changed_at"]

    def test_reject(self):
        form_id = _create(status="Waiting For Approve")
        assert lifecycle.reject_form(form_id, actor=ADMIN)["status"] == "Rejected"

    def test_same_status_is_noop(self):
        form_id = _create()
        form = lifecycle.transition_form(form_id, "Draft", actor=STAFF)
        assert form["status"] == "Draft"
        assert not form["status_changed_by"]

    @pytest.mark.parametrize("start,target", [
        ("Draft", "Approved"),
        ("Draft", "Rejected"),
    ])
    def test_skipping_submission_rejected(self, start, target):
        form_id = _create(status=start)
        with pytest.raises(InvalidStateError):
            lifecycle.transition_form(form_id, target, actor=ADMIN)

    @pytest.mark.parametrize("terminal", ["Approved", "Rejected"])
    def test_terminal_states(self, terminal):
        form_id = _create(status="Waiting For Approve")
        lifecycle.transition_form(form_id, terminal, actor=ADMIN)
        for target in ("Draft", "Waiting For Approve"):
            with pytest.raises(InvalidStateError):
                lifecycle.transition_form(form_id, target, actor=ADMIN)

    def test_regular_user_cannot_approve(self):
        form_id = _create(status="Waiting For Approve")
        with pytest.raises(PermissionDeniedError):
            lifecycle.approve_form(form_id, actor=STAFF)
        assert lifecycle.get_form(form_id)["status"] == "Waiting For Approve"

    def test_approver_roles_env(self, monkeypatch):
        monkeypatch.setenv("APPROVER_ROLES", "admin")
        form_id = _create(status="Waiting For Approve")
        with pytest.raises(PermissionDeniedError):
            lifecycle.approve_form(form_id, actor=MANAGER)

    def test_invalid_status_value(self):
        form_id = _create()
        with pytest.raises(ValidationError):
            lifecycle.transition_form(form_id, "Archived")

    def test_compare_and_set_loses_race(self):
        form_id = _create(status="Waiting For Approve")
        # Someone else decided first: the stale expected status no longer matches
        assert db.set_form_status(form_id, "Rejected", "Waiting For Approve", "other") is True
        assert db.set_form_status(form_id, "Approved", "Waiting For Approve", "me") is False
        assert lifecycle.get_form(form_id)["status"] == "Rejected"


class TestCounts:
    def test_count_by_status(self):
        _create()
        _create(status="Waiting For Approve")
        _create(status="Waiting For Approve")
        assert db.count_forms_by_status() == {"Draft": 1, "Waiting For Approve": 2}
