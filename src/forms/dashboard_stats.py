"""
Admin dashboard aggregation.

Drafts are private to their owner and never counted. Every amount comes
from the details normalizer, so the numbers match the PDFs.
"""

import logging
from datetime import datetime

from src.forms.details import normalize
from src.forms.form_types import (
    APPROVED, DRAFT, FORM_TYPES, WAITING_FOR_APPROVE, form_title, resolve_status,
)

log = logging.getLogger("forms.stats")

MONTHS = ["Jan", "Feb", "Mar", "Apr", "May", "Jun",
          "Jul", "Aug", "Sep", "Oct", "Nov", "Dec"]


def build_dashboard_stats(forms: list, year: int = None) -> dict:
    """Summaries for the admin dashboard.

    Args:
        forms: form rows as returned by the store (details decoded)
        year: timeline year; defaults to the current year

    Returns:
        {"summary", "departments", "formTypes", "timeline", "years"}
    """
    year = year or datetime.now().year
    summary = {"totalForms": 0, "totalValueApproved": 0.0,
               "totalValuePending": 0.0, "formsByStatus": {}}
    departments, form_types = {}, {}
    timeline = {form_title(code): [0.0] * 12 for code in FORM_TYPES}
    years = {datetime.now().year}

    for form in forms:
        status = resolve_status(form.get("status")) or form.get("status") or ""
        if status == DRAFT:
            continue
        view = normalize(form)
        value = view["computed_total"]
        title = form_title(form.get("form_type"))

        summary["totalForms"] += 1
        summary["formsByStatus"][status] = summary["formsByStatus"].get(status, 0) + 1
        if status == APPROVED:
            summary["totalValueApproved"] += value
        elif status == WAITING_FOR_APPROVE:
            summary["totalValuePending"] += value

        dept = view["display_department"] or "Unassigned"
        bucket = departments.setdefault(dept, {"total": 0.0, "count": 0})
        bucket["total"] += value
        bucket["count"] += 1

        bucket = form_types.setdefault(title, {"total": 0.0, "count": 0})
        bucket["total"] += value
        bucket["count"] += 1

        if view["effective_date"]:
            when = datetime.strptime(view["effective_date"], "%Y-%m-%d")
            years.add(when.year)
            if when.year == year:
                timeline.setdefault(title, [0.0] * 12)[when.month - 1] += value

    summary["totalValueApproved"] = round(summary["totalValueApproved"], 2)
    summary["totalValuePending"] = round(summary["totalValuePending"], 2)
    log.info("Dashboard stats: %d forms, approved=%.2f pending=%.2f (year %d)",
             summary["totalForms"], summary["totalValueApproved"],
             summary["totalValuePending"], year)

    return {
        "summary": summary,
        "departments": [{"department": k, "count": v["count"], "total": round(v["total"], 2)}
                        for k, v in sorted(departments.items(), key=lambda kv: -kv[1]["total"])],
        "formTypes": [{"formType": k, "count": v["count"], "total": round(v["total"], 2)}
                      for k, v in sorted(form_types.items())],
        "timeline": {"year": year, "labels": MONTHS,
                     "series": {k: [round(x, 2) for x in v] for k, v in timeline.items()}},
        "years": sorted(years, reverse=True),
    }
