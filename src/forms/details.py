"""
Details Normalizer
==================
Every form row carries a free-form ``details`` JSON blob whose shape depends
on the form type, and on which revision of the UI wrote it. Old records were
never migrated, so the same total can live under half a dozen keys.

This module is the one place that knows those shapes:

  - parse_details()       any stored blob → dict (never raises)
  - to_number()           tolerant numeric coercion ("1,250.00", "฿300", None → 0)
  - compute_total()       per-type monetary total, first match in a cascade
  - canonical_details()   per-type adapter → tagged view the renderer consumes
  - normalize()           display name / department / effective date / total

Cascades (first present value wins):
  PurchaseRequest      grandTotal → subTotal + vat → Σ items.amount (qty × cost)
                       → prForm / summary / prItems / purchaseItems → 0
  TravelRequest        estimatedCost.total → Σ cost parts → tripDetails.estimatedCost
                       → scan keys named *total* / *cost* / *amount* / *estimate*
  MajorCapitalRequest  addition + disposal, each resolved through named keys,
                       nested forms, case/space-insensitive keys, section ledger,
                       raw line items → totalAmount → Σ projectItems.amount
  MinorCapitalRequest  totals.total → totalAmount → Σ items.total → Σ projectItems.amount
"""

import json
import logging
import math
import re
from datetime import date, datetime

from dateutil import parser as date_parser

from src.forms.form_types import (
    PURCHASE_REQUEST, TRAVEL_REQUEST, MAJOR_CAPITAL_REQUEST, MINOR_CAPITAL_REQUEST,
    resolve_form_type,
)

log = logging.getLogger("forms.normalizer")


# ═══════════════════════════════════════════════════════════════════════════════
# Primitive coercions
# ═══════════════════════════════════════════════════════════════════════════════

def parse_details(raw) -> dict:
    """Decode a stored details blob. Anything that isn't a JSON object → {}."""
    value = raw
    # Some legacy rows were JSON-encoded twice (a string holding a JSON string)
    for _ in range(3):
        if isinstance(value, dict):
            return value
        if isinstance(value, (bytes, bytearray)):
            try:
                value = value.decode("utf-8")
            except UnicodeDecodeError:
                return {}
        if not isinstance(value, str):
            return {}
        text = value.strip()
        if not text:
            return {}
        try:
            value = json.loads(text)
        except ValueError:
            return {}
    return value if isinstance(value, dict) else {}


_NUMERIC_NOISE = re.compile(r"[,\s$€£¥฿]|\b(?:AUD|THB|USD|EUR)\b", re.IGNORECASE)


def _as_number(value) -> float | None:
    """Return a finite float when value is numeric (or a numeric string), else None."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        f = float(value)
        return f if math.isfinite(f) else None
    if isinstance(value, str):
        cleaned = _NUMERIC_NOISE.sub("", value)
        if not cleaned:
            return None
        try:
            f = float(cleaned)
        except ValueError:
            return None
        return f if math.isfinite(f) else None
    return None


def to_number(value) -> float:
    """Coerce to float; anything unrecognizable counts as zero."""
    n = _as_number(value)
    return n if n is not None else 0.0


def _present(container, key) -> bool:
    return (isinstance(container, dict) and key in container
            and container[key] is not None and container[key] != "")


def _dig(container, path: str):
    """Walk a dotted path through nested dicts. Missing → None."""
    cur = container
    for part in path.split("."):
        if not isinstance(cur, dict):
            return None
        cur = cur.get(part)
    return cur


def _items(value) -> list:
    if not isinstance(value, list):
        return []
    return [i for i in value if isinstance(i, dict)]


def _text(value) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "Yes" if value else "No"
    return str(value).strip()


def _norm_key(key) -> str:
    return "".join(str(key).split()).lower()


def _sum_amounts(items) -> float:
    return sum(to_number(i.get("amount")) for i in items)


# ═══════════════════════════════════════════════════════════════════════════════
# PurchaseRequest
# ═══════════════════════════════════════════════════════════════════════════════

def _pr_item_amount(item: dict) -> float:
    if _present(item, "amount"):
        return to_number(item["amount"])
    return to_number(item.get("quantity")) * to_number(item.get("cost"))


def _pr_items(details: dict) -> list:
    for key in ("items", "prItems", "purchaseItems"):
        items = _items(details.get(key))
        if items:
            return items
    return []


def purchase_request_total(details: dict) -> float:
    if _present(details, "grandTotal"):
        return to_number(details["grandTotal"])
    if _present(details, "subTotal"):
        return to_number(details["subTotal"]) + to_number(details.get("vat"))

    items = _items(details.get("items"))
    if items:
        return sum(_pr_item_amount(i) for i in items)

    for path in ("prForm.grandTotal", "summary.grandTotal", "summary.total"):
        value = _dig(details, path)
        if value is not None and value != "":
            return to_number(value)
    for key in ("prItems", "purchaseItems"):
        legacy = _items(details.get(key))
        if legacy:
            return sum(_pr_item_amount(i) for i in legacy)
    return 0.0


def adapt_purchase_request(details: dict) -> dict:
    items = [{
        "description": _text(i.get("description")),
        "unit": _text(i.get("unit") or i.get("uom")),
        "quantity": to_number(i.get("quantity")),
        "cost": to_number(i.get("cost")),
        "amount": _pr_item_amount(i),
    } for i in _pr_items(details)]

    total = purchase_request_total(details)
    if _present(details, "subTotal"):
        sub_total = to_number(details["subTotal"])
    else:
        sub_total = sum(i["amount"] for i in items)

    return {
        "kind": PURCHASE_REQUEST,
        "name": _text(details.get("name")),
        "email": _text(details.get("email")),
        "department": _text(details.get("department")),
        "date": _text(details.get("date")),
        "currency": _text(details.get("currency")),
        "delivery_date": _text(details.get("deliveryDate")),
        "terms": _text(details.get("terms")),
        "supervisor_email": _text(details.get("supervisorEmail")),
        "reason_type": _text(details.get("reasonType")),
        "reason_comments": _text(details.get("reasonComments")),
        "remarks": _text(details.get("remarks")),
        "vendor": {
            "name": _text(details.get("vendorName")),
            "address": _text(details.get("vendorAddress")),
            "address2": _text(details.get("vendorAddress2")),
            "zip": _text(details.get("vendorZip")),
            "country": _text(details.get("CountryZip") or details.get("vendorCountry")),
        },
        "items": items,
        "sub_total": sub_total,
        "vat": to_number(details.get("vat")),
        "grand_total": total,
        "approvals": [
            {"role": "Department Manager",
             "sign": _text(details.get("signDepartmentManager")),
             "date": _text(details.get("dateDepartmentManager")),
             "comment": _text(details.get("depManagerComment"))},
            {"role": "General Manager",
             "sign": _text(details.get("signGeneralManager")),
             "date": _text(details.get("dateGeneralManager")),
             "comment": _text(details.get("gmComment"))},
        ],
        "total": total,
    }


# ═══════════════════════════════════════════════════════════════════════════════
# TravelRequest
# ═══════════════════════════════════════════════════════════════════════════════

_COST_PARTS = (
    ("airfare", ("airfare",)),
    ("accommodations", ("accommodations", "accommodation", "hotel")),
    ("meals_entertainment", ("mealsEntertainment", "meals")),
    ("other", ("other", "others")),
)

_COST_KEY_WORDS = ("total", "cost", "amount", "estimate")


def _cost_parts(block) -> dict:
    parts = {}
    if not isinstance(block, dict):
        return parts
    for canonical, aliases in _COST_PARTS:
        for alias in aliases:
            if _present(block, alias):
                parts[canonical] = to_number(block[alias])
                break
    return parts


def _cost_block_total(block) -> float | None:
    """Total of an estimatedCost-like dict; None when it carries nothing usable."""
    if not isinstance(block, dict):
        return None
    if _present(block, "total"):
        return to_number(block["total"])
    parts = _cost_parts(block)
    if parts:
        return sum(parts.values())
    return None


def _scan_cost_keys(details: dict) -> float:
    for key, value in details.items():
        lowered = str(key).lower()
        if not any(word in lowered for word in _COST_KEY_WORDS):
            continue
        if isinstance(value, bool):
            continue
        if isinstance(value, dict):
            found = _cost_block_total(value) or 0.0
        else:
            found = _as_number(value) or 0.0
        if found > 0:
            return found
    return 0.0


def travel_request_total(details: dict) -> float:
    for block in (details.get("estimatedCost"), _dig(details, "tripDetails.estimatedCost")):
        total = _cost_block_total(block)
        if total is not None:
            return total
    return _scan_cost_keys(details)


def adapt_travel_request(details: dict) -> dict:
    trips_raw = _items(details.get("trips")) or _items(_dig(details, "tripDetails.trips"))
    trips = [{
        "from": _text(t.get("from")),
        "to": _text(t.get("to")),
        "departure_date": _text(t.get("departureDate")),
        "return_date": _text(t.get("returnDate")),
        "round_trip": bool(t.get("roundTrip")),
        "trip_class": _text(t.get("tripClass")),
        "airline": _text(t.get("airline")),
        "include_hotel": bool(t.get("includeHotel")),
        "include_car_rental": bool(t.get("includeCarRental")),
    } for t in trips_raw]

    block = details.get("estimatedCost")
    if not isinstance(block, dict):
        block = _dig(details, "tripDetails.estimatedCost")
    parts = _cost_parts(block)
    total = travel_request_total(details)

    return {
        "kind": TRAVEL_REQUEST,
        "name": _text(details.get("name")),
        "email": _text(details.get("email")),
        "location": _text(details.get("location")),
        "country": _text(details.get("country")),
        "currency": _text(details.get("currency")),
        "business_purpose": _text(details.get("businessPurpose")),
        "request_date": _text(details.get("requestDate")),
        "department_manager": _text(details.get("departmentManager")),
        "trips": trips,
        "estimated_cost": {
            "airfare": parts.get("airfare", 0.0),
            "accommodations": parts.get("accommodations", 0.0),
            "meals_entertainment": parts.get("meals_entertainment", 0.0),
            "other": parts.get("other", 0.0),
            "total": total,
        },
        "total": total,
    }


# ═══════════════════════════════════════════════════════════════════════════════
# MajorCapitalRequest
# ═══════════════════════════════════════════════════════════════════════════════

_MAJOR_SIDES = {
    "addition": {
        "key": "totalAdditionRequest",
        "labels": ("Total Addition Request", "totalAddition", "Addition Request Total"),
        "section": "additionSection",
        "lines": (("capitalAddition", "Capital Addition"),
                  ("capitalRelatedExpense", "Capital-Related Expense"),
                  ("pvLeasePayment", "PV of Lease Payment")),
        "items": "additionItems",
    },
    "disposal": {
        "key": "totalDisposalRequest",
        "labels": ("Total Disposal Request", "totalDisposal", "Disposal Request Total"),
        "section": "disposalSection",
        "lines": (("capitalDisposal", "Capital Disposal"),
                  ("capitalRelatedExpense2", "Capital-Related Expense"),
                  ("otherInitialCost", "Other Initial Cost")),
        "items": "disposalItems",
    },
}

_AUTHORIZATION_TYPES = (
    ("capitalAddition", "Capital Addition"),
    ("expansion", "Expansion"),
    ("newDevelopment", "New Development"),
    ("qualityImprovement", "Quality Improvement"),
    ("replacement", "Replacement"),
    ("costProfit", "Cost / Profit Improvement"),
    ("capitalDisposal", "Capital Disposal"),
    ("other", "Other"),
)

_CAR_TYPES = (("basic", "Basic"), ("supplemental", "Supplemental"), ("design", "Design"))


def _ledger(section, lines) -> list:
    rows = []
    for key, label in lines:
        entry = section.get(key) if isinstance(section, dict) else None
        entry = entry if isinstance(entry, dict) else {}
        prev = to_number(entry.get("previouslyApproved"))
        this = to_number(entry.get("thisRequest"))
        rows.append({"key": key, "label": label, "previously_approved": prev,
                     "this_request": this, "total": prev + this})
    return rows


def _major_side_total(details: dict, side: str) -> float:
    cfg = _MAJOR_SIDES[side]
    key = cfg["key"]

    for container in (details, details.get("mainForm"), details.get("capitalForm")):
        if _present(container, key):
            return to_number(container[key])
    for label in cfg["labels"]:
        if _present(details, label):
            return to_number(details[label])

    wanted = {_norm_key(key)} | {_norm_key(label) for label in cfg["labels"]}
    for k, v in details.items():
        if _norm_key(k) in wanted and v is not None and v != "":
            return to_number(v)

    section = details.get(cfg["section"])
    if isinstance(section, dict) and any(isinstance(section.get(k), dict) for k, _ in cfg["lines"]):
        return sum(row["total"] for row in _ledger(section, cfg["lines"]))

    items = _items(details.get(cfg["items"]))
    if items:
        return _sum_amounts(items)

    for k, v in details.items():
        lowered = str(k).lower()
        if side in lowered and "total" in lowered and not isinstance(v, (dict, list, bool)):
            found = _as_number(v)
            if found:
                return found
    return 0.0


def major_capital_total(details: dict) -> float:
    addition = _major_side_total(details, "addition")
    disposal = _major_side_total(details, "disposal")
    if addition or disposal:
        return addition + disposal
    if _present(details, "totalAmount"):
        return to_number(details["totalAmount"])
    return _sum_amounts(_items(details.get("projectItems")))


def _checked(flags, options) -> list:
    if not isinstance(flags, dict):
        return []
    labels = [label for key, label in options if flags.get(key)]
    other_text = _text(flags.get("otherText"))
    if flags.get("other") and other_text:
        labels = [f"Other: {other_text}" if label == "Other" else label for label in labels]
    return labels


def adapt_major_capital_request(details: dict) -> dict:
    addition_total = _major_side_total(details, "addition")
    disposal_total = _major_side_total(details, "disposal")
    economic = details.get("economicImpact") if isinstance(details.get("economicImpact"), dict) else {}
    financial = details.get("financialImpact") if isinstance(details.get("financialImpact"), dict) else {}

    return {
        "kind": MAJOR_CAPITAL_REQUEST,
        "operating_company": _text(details.get("operatingCompany")),
        "department": _text(details.get("department")),
        "date": _text(details.get("date")),
        "name": _text(details.get("name")),
        "email": _text(details.get("email")),
        "car_number": _text(details.get("carNumber")),
        "project_description": _text(details.get("projectDescription")),
        "project_summary": _text(details.get("projectSummary")),
        "authorization_type": _checked(details.get("authorizationType"), _AUTHORIZATION_TYPES),
        "car_type": _checked(details.get("carType"), _CAR_TYPES),
        "addition_lines": _ledger(details.get("additionSection"), _MAJOR_SIDES["addition"]["lines"]),
        "disposal_lines": _ledger(details.get("disposalSection"), _MAJOR_SIDES["disposal"]["lines"]),
        "addition_total": addition_total,
        "disposal_total": disposal_total,
        "local_currency": _text(details.get("localCurrency")),
        "exchange_rate": _text(details.get("exchangeRate")),
        "future_commitment": _text(details.get("futureCommitment")) or "No",
        "lease_payments": [{
            "rent": _text(p.get("rent")),
            "for": _text(p.get("for")),
            "budgeted_amount": _text(p.get("budgetedAmount")),
            "change_from_budget": _text(p.get("changeFromBudget")),
            "start_date": _text(p.get("startDate")),
            "operational_date": _text(p.get("operationalDate")),
            "post_review_date": _text(p.get("postReviewDate")),
        } for p in _items(details.get("leasePayments"))],
        "financial_impact": [
            ("Year", [_text(financial.get(f"year{n}")) for n in range(1, 5)]),
            ("Profit / Loss", [_text(financial.get(f"profitLoss{n}")) for n in range(1, 5)]),
            ("Cash Flow", [_text(financial.get(f"cashFlow{n}")) for n in range(1, 5)]),
        ],
        "economic_impact": {
            "internal_rate": _text(economic.get("internalRate")),
            "net_present_value": _text(economic.get("netPresentValue")),
            "discount_rate": _text(economic.get("discountRate")),
            "project_life": _text(economic.get("projectLife")),
            "after_tax_payback": _text(economic.get("afterTaxPayback")),
        },
        "total": major_capital_total(details),
    }


# ═══════════════════════════════════════════════════════════════════════════════
# MinorCapitalRequest
# ═══════════════════════════════════════════════════════════════════════════════

_PURPOSES = (
    ("costReduction", "Cost Reduction"),
    ("expansion", "Expansion"),
    ("qualityImprovement", "Quality Improvement"),
    ("replacement", "Replacement"),
    ("other", "Other"),
)


def _minor_item_total(item: dict) -> float:
    if _present(item, "total"):
        return to_number(item["total"])
    return (to_number(item.get("capital")) + to_number(item.get("expense"))
            + to_number(item.get("lease")))


def minor_capital_total(details: dict) -> float:
    if _present(details.get("totals"), "total"):
        return to_number(details["totals"]["total"])
    if _present(details, "totalAmount"):
        return to_number(details["totalAmount"])
    items = _items(details.get("items"))
    if items:
        return sum(_minor_item_total(i) for i in items)
    return _sum_amounts(_items(details.get("projectItems")))


def adapt_minor_capital_request(details: dict) -> dict:
    items = [{
        "car_number": _text(i.get("carNumber")),
        "description": _text(i.get("description")),
        "start_date": _text(i.get("startDate")),
        "capital": to_number(i.get("capital")),
        "expense": to_number(i.get("expense")),
        "lease": to_number(i.get("lease")),
        "total": _minor_item_total(i),
    } for i in _items(details.get("items"))]

    stored = details.get("totals") if isinstance(details.get("totals"), dict) else {}
    totals = {}
    for col in ("capital", "expense", "lease"):
        if _present(stored, col):
            totals[col] = to_number(stored[col])
        else:
            totals[col] = sum(i[col] for i in items)
    totals["total"] = minor_capital_total(details)

    return {
        "kind": MINOR_CAPITAL_REQUEST,
        "operating_company": _text(details.get("operatingCompany")),
        "department": _text(details.get("department")),
        "date": _text(details.get("date")),
        "name": _text(details.get("name")),
        "email": _text(details.get("email")),
        "country": _text(details.get("country")),
        "currency": _text(details.get("currency")),
        "project_summary": _text(details.get("projectSummary")),
        "purpose": _checked(details.get("purpose"), _PURPOSES),
        "items": items,
        "totals": totals,
        "total": totals["total"],
    }


# ═══════════════════════════════════════════════════════════════════════════════
# Dispatch
# ═══════════════════════════════════════════════════════════════════════════════

ADAPTERS = {
    PURCHASE_REQUEST: adapt_purchase_request,
    TRAVEL_REQUEST: adapt_travel_request,
    MAJOR_CAPITAL_REQUEST: adapt_major_capital_request,
    MINOR_CAPITAL_REQUEST: adapt_minor_capital_request,
}

TOTALS = {
    PURCHASE_REQUEST: purchase_request_total,
    TRAVEL_REQUEST: travel_request_total,
    MAJOR_CAPITAL_REQUEST: major_capital_total,
    MINOR_CAPITAL_REQUEST: minor_capital_total,
}


def flatten_details(details: dict, prefix: str = "") -> list:
    """[(dotted.key, text)] for a generic key/value dump."""
    rows = []
    for key, value in details.items():
        name = f"{prefix}.{key}" if prefix else str(key)
        if isinstance(value, dict) and value:
            rows.extend(flatten_details(value, name))
        elif isinstance(value, (list, tuple)):
            rows.append((name, json.dumps(value, default=str, ensure_ascii=False)))
        else:
            rows.append((name, _text(value)))
    return rows


def canonical_details(form_type, details) -> dict:
    """Run the adapter for form_type. Unknown types get a flat key/value view."""
    details = parse_details(details)
    code = resolve_form_type(form_type)
    adapter = ADAPTERS.get(code)
    if adapter is None:
        return {"kind": _text(form_type), "fields": flatten_details(details), "total": 0.0}
    return adapter(details)


def compute_total(form_type, details) -> float:
    fn = TOTALS.get(resolve_form_type(form_type))
    if fn is None:
        return 0.0
    return round(fn(parse_details(details)), 2)


def _parse_date(value) -> str:
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if not isinstance(value, str) or not value.strip():
        return ""
    try:
        return date_parser.parse(value.strip()).date().isoformat()
    except (ValueError, OverflowError):
        return ""


def effective_date(form_type, details: dict, fallback=None) -> str:
    """details.date (requestDate for travel) → record request_date, as YYYY-MM-DD."""
    keys = ("requestDate", "date") if resolve_form_type(form_type) == TRAVEL_REQUEST else ("date",)
    for key in keys:
        if _present(details, key):
            parsed = _parse_date(details[key])
            if parsed:
                return parsed
    return _parse_date(fallback)


_EMPTY_VIEW = {
    "display_name": "",
    "display_department": "",
    "effective_date": "",
    "computed_total": 0.0,
}


def normalize(record) -> dict:
    """Canonical display fields for a form record. Never raises."""
    try:
        if not isinstance(record, dict):
            return dict(_EMPTY_VIEW)
        details = parse_details(record.get("details"))
        form_type = record.get("form_type") or record.get("form_name")
        return {
            "display_name": _text(details.get("name")) or _text(record.get("owner_name")),
            "display_department": (_text(details.get("department"))
                                   or _text(record.get("department"))),
            "effective_date": effective_date(form_type, details, record.get("request_date")),
            "computed_total": compute_total(form_type, details),
        }
    except Exception:
        log.warning("normalize failed for form %s", record.get("id"), exc_info=True)
        return dict(_EMPTY_VIEW)
