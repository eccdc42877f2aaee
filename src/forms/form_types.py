"""
Form-type and status registry.

Canonical codes are what the API and the renderer dispatch on. Older
records and the existing UI still send the long display names, so both
are resolved here.
"""

PURCHASE_REQUEST = "PurchaseRequest"
TRAVEL_REQUEST = "TravelRequest"
MAJOR_CAPITAL_REQUEST = "MajorCapitalRequest"
MINOR_CAPITAL_REQUEST = "MinorCapitalRequest"

COMPANY_NAME = "Newly Weds Foods (Thailand) Limited"

# ═══════════════════════════════════════════════════════════════════════════════
# FORM TYPE CONFIGS: title, PDF heading, legacy names
# ═══════════════════════════════════════════════════════════════════════════════
FORM_TYPES = {
    PURCHASE_REQUEST: {
        "title": "Purchase Request",
        "heading": "General Purchase Requisition",
        "subtitle": "FORM # PC-FM-013",
        "aliases": ["Purchase Request", "PR", "Purchase Requisition"],
    },
    TRAVEL_REQUEST: {
        "title": "Travel Request",
        "heading": "NWFAP TRAVEL REQUEST",
        "subtitle": "",
        "aliases": ["Travel Request", "Travel"],
    },
    MAJOR_CAPITAL_REQUEST: {
        "title": "Major Capital Authorization Request",
        "heading": "Capital Authorization Request",
        "subtitle": "(For Capital Projects > AUD 10,000)",
        "aliases": ["Major Capital Authorization Request", "Major Capital Request", "Major CAR"],
    },
    MINOR_CAPITAL_REQUEST: {
        "title": "Minor Capital Authorization Request",
        "heading": "Minor Capital Authorization Request",
        "subtitle": "(In Local Currency & for Projects less than 10,000 AUD)",
        "aliases": ["Minor Capital Authorization Request", "Minor Capital Request", "Minor CAR"],
    },
}

# ═══════════════════════════════════════════════════════════════════════════════
# STATUSES: stored strings match what the UI renders
# ═══════════════════════════════════════════════════════════════════════════════
DRAFT = "Draft"
WAITING_FOR_APPROVE = "Waiting For Approve"
APPROVED = "Approved"
REJECTED = "Rejected"

STATUSES = (DRAFT, WAITING_FOR_APPROVE, APPROVED, REJECTED)
INITIAL_STATUSES = (DRAFT, WAITING_FOR_APPROVE)

_STATUS_ALIASES = {
    "draft": DRAFT,
    "waitingforapprove": WAITING_FOR_APPROVE,
    "waitingforapproval": WAITING_FOR_APPROVE,
    "pending": WAITING_FOR_APPROVE,
    "submitted": WAITING_FOR_APPROVE,
    "approved": APPROVED,
    "approve": APPROVED,
    "rejected": REJECTED,
    "reject": REJECTED,
}


def _squash(value) -> str:
    return "".join(str(value).split()).lower()


_TYPE_LOOKUP = {}
for _code, _cfg in FORM_TYPES.items():
    _TYPE_LOOKUP[_squash(_code)] = _code
    for _alias in _cfg["aliases"]:
        _TYPE_LOOKUP[_squash(_alias)] = _code


def resolve_form_type(value) -> str | None:
    """Map a code or legacy display name to its canonical code, else None."""
    if not value or not isinstance(value, str):
        return None
    return _TYPE_LOOKUP.get(_squash(value))


def resolve_status(value) -> str | None:
    """Map a status string (any spacing/case, or an alias) to the stored form."""
    if not value or not isinstance(value, str):
        return None
    return _STATUS_ALIASES.get(_squash(value))


def form_title(form_type) -> str:
    """Human title for a form type; unknown types are shown as given."""
    code = resolve_form_type(form_type)
    if code:
        return FORM_TYPES[code]["title"]
    return str(form_type or "Form")


def email_subject(form_type) -> str:
    return f"{form_title(form_type)} Submission"


def email_intro(form_type) -> str:
    return f"has submitted a {form_title(form_type).lower()} in our system."


def attachment_name(form_type, form_id) -> str:
    stem = "_".join(form_title(form_type).split())
    return f"{stem}_{form_id}.pdf"
