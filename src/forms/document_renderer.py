"""
Form PDF Renderer
=================
One fixed layout per form type, built declaratively with reportlab platypus
and written to memory. Callers get the whole document or a RenderError,
never a half-written file.

Layouts:
  - PurchaseRequest      requester grid, line items, Sub Total / VAT / Grand Total,
                         reason + vendor, manager sign-off
  - TravelRequest        traveler info, multi-leg trip table, estimated cost
  - MajorCapitalRequest  project grid, authorization checklist, addition/disposal
                         ledger, lease payments, financial + economic impact
  - MinorCapitalRequest  project grid, purpose checklist, CAR line items + totals
  - anything else        generic key/value dump of details

All totals come from the details normalizer so the PDF, the dashboard and
the email agree on the same number.
"""

import functools
import logging
import os
from datetime import datetime
from io import BytesIO
from xml.sax.saxutils import escape

from reportlab.lib.colors import Color, HexColor
from reportlab.lib.enums import TA_CENTER, TA_RIGHT
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import mm
from reportlab.platypus import Image, KeepTogether, Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

from src.core.errors import RenderError
from src.core.paths import LOGO_PATH
from src.forms.details import canonical_details, normalize
from src.forms.form_types import (
    COMPANY_NAME, FORM_TYPES, MAJOR_CAPITAL_REQUEST, MINOR_CAPITAL_REQUEST,
    PURCHASE_REQUEST, TRAVEL_REQUEST, form_title, resolve_form_type,
)

log = logging.getLogger("forms.renderer")

# ═══════════════════════════════════════════════════════════════════════════════
# COLORS + GEOMETRY
# ═══════════════════════════════════════════════════════════════════════════════
FILL    = Color(0.765, 0.765, 0.882)   # #C3C3E0  lavender header fill
LBL_BD  = Color(0.278, 0.278, 0.553)   # #46468D  label cell border
TBL_BD  = Color(0.278, 0.278, 0.553)   # #46468D  table grid borders
GRAY    = HexColor("#555555")
NAVY    = HexColor("#1a2744")
ALT_ROW = Color(0.96, 0.96, 0.98)      # subtle alternate row

PAGE_SIZE = A4
MARGIN = 15 * mm
CONTENT_WIDTH = PAGE_SIZE[0] - 2 * MARGIN


def _styles() -> dict:
    base = getSampleStyleSheet()
    cell = ParagraphStyle("Cell", parent=base["Normal"], fontSize=8, leading=10)
    return {
        "company": ParagraphStyle("Company", parent=base["Title"], fontSize=14,
                                  textColor=NAVY, spaceAfter=2),
        "heading": ParagraphStyle("FormHeading", parent=base["Heading2"], alignment=TA_CENTER,
                                  fontSize=13, spaceBefore=2, spaceAfter=2),
        "subtitle": ParagraphStyle("Subtitle", parent=base["Normal"], alignment=TA_CENTER,
                                   fontSize=9, textColor=GRAY, spaceAfter=6),
        "section": ParagraphStyle("Section", parent=base["Heading4"], textColor=NAVY,
                                  spaceBefore=8, spaceAfter=4),
        "label": ParagraphStyle("Label", parent=cell, fontName="Helvetica-Bold"),
        "cell": cell,
        "num": ParagraphStyle("Num", parent=cell, alignment=TA_RIGHT),
        "body": ParagraphStyle("Body", parent=base["BodyText"], fontSize=9, leading=12),
    }


# ── Small helpers ────────────────────────────────────────────────────────────

def _p(text, style) -> Paragraph:
    safe = escape("" if text is None else str(text)).replace("\n", "<br/>")
    return Paragraph(safe, style)


def _money(value) -> str:
    return f"{float(value or 0):,.2f}"


def _qty(value) -> str:
    value = float(value or 0)
    return str(int(value)) if value.is_integer() else f"{value:g}"


def _section(title: str, st: dict) -> Paragraph:
    return _p(title, st["section"])


def _field_grid(pairs, st: dict, columns: int = 2) -> Table:
    """Label/value pairs laid out `columns` pairs per row."""
    label_w = CONTENT_WIDTH * 0.18
    value_w = CONTENT_WIDTH / columns - label_w
    rows = []
    for start in range(0, len(pairs), columns):
        row = []
        chunk = list(pairs[start:start + columns])
        chunk += [("", "")] * (columns - len(chunk))
        for label, value in chunk:
            row += [_p(label, st["label"]), _p(value, st["cell"])]
        rows.append(row)

    table = Table(rows, colWidths=[label_w, value_w] * columns)
    style = [
        ("GRID", (0, 0), (-1, -1), 0.5, LBL_BD),
        ("VALIGN", (0, 0), (-1, -1), "TOP"),
    ]
    for col in range(0, columns * 2, 2):
        style.append(("BACKGROUND", (col, 0), (col, -1), FILL))
    table.setStyle(TableStyle(style))
    return table


def _data_table(header, rows, st: dict, col_widths, numeric_cols=(), total_rows: int = 0) -> Table:
    """Header row + body rows. The last `total_rows` rows are styled as totals."""
    data = [[_p(h, st["label"]) for h in header]]
    for row in rows:
        data.append([_p(v, st["num"] if i in numeric_cols else st["cell"])
                     for i, v in enumerate(row)])

    table = Table(data, colWidths=col_widths, repeatRows=1)
    style = [
        ("BACKGROUND", (0, 0), (-1, 0), FILL),
        ("GRID", (0, 0), (-1, -1), 0.5, TBL_BD),
        ("VALIGN", (0, 0), (-1, -1), "TOP"),
    ]
    body_end = len(data) - 1 - total_rows
    for r in range(2, body_end + 1, 2):
        style.append(("BACKGROUND", (0, r), (-1, r), ALT_ROW))
    if total_rows:
        style.append(("BACKGROUND", (0, body_end + 1), (-1, -1), FILL))
    table.setStyle(TableStyle(style))
    return table


def _widths(*fractions) -> list:
    return [CONTENT_WIDTH * f for f in fractions]


def _checklist(labels, st: dict) -> Paragraph:
    if not labels:
        return _p("(none selected)", st["cell"])
    return _p("   ".join(f"[x] {label}" for label in labels), st["cell"])


def _sign_off(columns, st: dict) -> Table:
    """Blank TITLE / SIGNATURE / DATE block for wet signatures."""
    header = [""] + list(columns)
    rows = [[label] + [""] * len(columns) for label in ("TITLE", "SIGNATURE", "DATE")]
    first = 0.2
    rest = (1 - first) / len(columns)
    table = _data_table(header, rows, st, _widths(first, *([rest] * len(columns))))
    table.setStyle(TableStyle([("TOPPADDING", (0, 1), (-1, -1), 8),
                               ("BOTTOMPADDING", (0, 1), (-1, -1), 8)]))
    return table


# ═══════════════════════════════════════════════════════════════════════════════
# Shared header / footer
# ═══════════════════════════════════════════════════════════════════════════════

def _header(record: dict, form_type: str | None, st: dict) -> list:
    cfg = FORM_TYPES.get(form_type)
    heading = cfg["heading"] if cfg else form_title(record.get("form_type") or record.get("form_name"))
    subtitle = cfg["subtitle"] if cfg else ""

    company = _p(COMPANY_NAME, st["company"])
    if os.path.exists(LOGO_PATH):
        logo = Image(LOGO_PATH, width=30 * mm, height=15 * mm, kind="proportional")
        top = Table([[logo, company]], colWidths=_widths(0.25, 0.75))
        top.setStyle(TableStyle([("VALIGN", (0, 0), (-1, -1), "MIDDLE")]))
    else:
        top = company

    story = [top, _p(heading, st["heading"])]
    if subtitle:
        story.append(_p(subtitle, st["subtitle"]))
    story.append(Spacer(1, 4))
    return story


def _footer(canvas_obj, doc, record: dict) -> None:
    canvas_obj.saveState()
    canvas_obj.setFont("Helvetica", 7)
    canvas_obj.setFillColor(GRAY)
    left = f"Form #{record.get('id', '-')} | {record.get('status') or 'Draft'}"
    canvas_obj.drawString(MARGIN, 10 * mm, left)
    canvas_obj.drawCentredString(PAGE_SIZE[0] / 2, 10 * mm,
                                 f"Generated {datetime.now().strftime('%Y-%m-%d %H:%M')}")
    canvas_obj.drawRightString(PAGE_SIZE[0] - MARGIN, 10 * mm, f"Page {doc.page}")
    canvas_obj.restoreState()


# ═══════════════════════════════════════════════════════════════════════════════
# Per-type layouts
# ═══════════════════════════════════════════════════════════════════════════════

def _purchase_request_story(record: dict, view: dict, summary: dict, st: dict) -> list:
    story = [_field_grid([
        ("Name", view["name"] or summary["display_name"]),
        ("Email", view["email"]),
        ("Department", view["department"] or summary["display_department"]),
        ("Date", view["date"] or summary["effective_date"]),
    ], st), Spacer(1, 8)]

    rows = [[str(n), i["description"], i["unit"], _qty(i["quantity"]),
             _money(i["cost"]), _money(i["amount"])]
            for n, i in enumerate(view["items"], start=1)]
    rows += [
        ["", "", "", "", "Sub Total", _money(view["sub_total"])],
        ["", "", "", "", "VAT (7%)", _money(view["vat"])],
        ["", "", "", "", "Grand Total", _money(view["grand_total"])],
    ]
    story.append(_data_table(
        ["ITEM", "Description", "UOM", "Quantity", "Cost", "Amount"], rows, st,
        _widths(0.07, 0.41, 0.1, 0.12, 0.14, 0.16), numeric_cols=(3, 4, 5), total_rows=3))

    if view["remarks"]:
        story += [_section("Remarks", st), _p(view["remarks"], st["body"])]

    story += [_section("Reason of Request", st), _field_grid([
        ("Type", view["reason_type"]),
        ("Delivery Date", view["delivery_date"]),
        ("Comments", view["reason_comments"]),
        ("Supervisor", view["supervisor_email"]),
    ], st)]

    vendor = view["vendor"]
    story += [_section("Vendor Info", st), _field_grid([
        ("Vendor Name", vendor["name"]),
        ("Address1", vendor["address"]),
        ("Address2", vendor["address2"]),
        ("Zip Code", vendor["zip"]),
        ("Country", vendor["country"]),
        ("Currency", view["currency"]),
        ("Terms", view["terms"]),
    ], st)]

    approvals = view["approvals"]
    story += [_section("Approval", st), _data_table(
        [""] + [a["role"] for a in approvals],
        [["Sign"] + [a["sign"] for a in approvals],
         ["Date"] + [a["date"] for a in approvals],
         ["Comment"] + [a["comment"] for a in approvals]],
        st, _widths(0.16, 0.42, 0.42))]
    return story


def _travel_request_story(record: dict, view: dict, summary: dict, st: dict) -> list:
    story = [_field_grid([
        ("Business Purpose", view["business_purpose"]),
        ("Request Date", view["request_date"] or summary["effective_date"]),
    ], st)]

    story += [_section("Traveler Information", st), _field_grid([
        ("Name", view["name"] or summary["display_name"]),
        ("Email", view["email"]),
        ("Location", view["location"]),
        ("Country", view["country"]),
        ("Currency", view["currency"]),
    ], st)]

    rows = [[str(n), t["from"], t["to"], t["departure_date"],
             t["return_date"] if t["round_trip"] else "One Way",
             t["trip_class"], t["airline"],
             "Yes" if t["include_hotel"] else "No",
             "Yes" if t["include_car_rental"] else "No"]
            for n, t in enumerate(view["trips"], start=1)]
    story += [_section("Trips", st), _data_table(
        ["TRIP #", "From", "To", "Departure", "Return", "Class", "Airline", "Hotel", "Car"],
        rows, st, _widths(0.07, 0.14, 0.14, 0.12, 0.12, 0.1, 0.13, 0.09, 0.09))]

    cost = view["estimated_cost"]
    story += [_section("Estimated Cost of Trip", st), _data_table(
        ["Item", "Amount"],
        [["Airfare", _money(cost["airfare"])],
         ["Accommodations", _money(cost["accommodations"])],
         ["Meals/Entertainment", _money(cost["meals_entertainment"])],
         ["Other", _money(cost["other"])],
         ["Total", _money(cost["total"])]],
        st, _widths(0.6, 0.4), numeric_cols=(1,), total_rows=1)]

    story += [_section("Signatures and Date", st),
              _field_grid([("Department Manager", view["department_manager"])], st, columns=1)]
    return story


def _ledger_rows(lines, total_label: str, side_total: float) -> list:
    rows = [[l["label"], _money(l["previously_approved"]), _money(l["this_request"]),
             _money(l["total"])] for l in lines]
    rows.append([total_label,
                 _money(sum(l["previously_approved"] for l in lines)),
                 _money(sum(l["this_request"] for l in lines)),
                 _money(side_total)])
    return rows


def _major_capital_story(record: dict, view: dict, summary: dict, st: dict) -> list:
    story = [_field_grid([
        ("Operating Company", view["operating_company"]),
        ("Department", view["department"] or summary["display_department"]),
        ("Date", view["date"] or summary["effective_date"]),
        ("Name", view["name"] or summary["display_name"]),
        ("Email", view["email"]),
        ("CAR No. NWF", view["car_number"]),
    ], st)]

    story += [_section("Project Description", st), _p(view["project_description"], st["body"]),
              _section("Project Summary", st), _p(view["project_summary"], st["body"])]

    rows = (_ledger_rows(view["addition_lines"], "Total Addition Request", view["addition_total"])
            + _ledger_rows(view["disposal_lines"], "Total Disposal Request", view["disposal_total"]))
    rows.append(["Total Request", "", "", _money(view["total"])])
    ledger = _data_table(["", "Previously Approved", "This Request", "Total Request"], rows, st,
                         _widths(0.34, 0.22, 0.22, 0.22), numeric_cols=(1, 2, 3), total_rows=1)
    add_total_row = len(view["addition_lines"]) + 1
    disp_total_row = add_total_row + len(view["disposal_lines"]) + 1
    ledger.setStyle(TableStyle([
        ("BACKGROUND", (0, add_total_row), (-1, add_total_row), FILL),
        ("BACKGROUND", (0, disp_total_row), (-1, disp_total_row), FILL),
    ]))
    story += [_section("Authority", st), ledger]

    story += [_section("Authorization Type", st), _checklist(view["authorization_type"], st),
              _section("CAR Type", st), _checklist(view["car_type"], st), Spacer(1, 6),
              _field_grid([
                  ("Local Currency", view["local_currency"]),
                  ("Exch Rate", view["exchange_rate"]),
                  ("Future Commitment Required", view["future_commitment"]),
              ], st)]

    lease_rows = [[f"Min: {p['rent']}  For: {p['for']}", p["budgeted_amount"],
                   p["change_from_budget"], p["start_date"], p["operational_date"],
                   p["post_review_date"]] for p in view["lease_payments"]]
    if lease_rows:
        story += [_section("Lease or Continued Payment", st), _data_table(
            ["Lease or Continued Payment", "Budgeted Amount", "Change From Budget",
             "Start Date", "Operational Date", "Post Review Date"],
            lease_rows, st, _widths(0.25, 0.15, 0.15, 0.15, 0.15, 0.15))]

    story += [_section("Financial Impact", st), _data_table(
        ["", "1", "2", "3", "4"],
        [[label] + values for label, values in view["financial_impact"]],
        st, _widths(0.2, 0.2, 0.2, 0.2, 0.2))]

    econ = view["economic_impact"]
    story += [_section("Economic Impact (In AU Dollars)", st), _data_table(
        ["Internal Rate of Return (IRR) %", "Net Present Value (NPV)",
         "Discount Rate for NPV (%)", "Project Life (Years)", "After Tax Payback (Years)"],
        [[econ["internal_rate"], econ["net_present_value"], econ["discount_rate"],
          econ["project_life"], econ["after_tax_payback"]]],
        st, _widths(0.2, 0.2, 0.2, 0.2, 0.2))]

    story += [_section("Approval", st),
              KeepTogether(_sign_off(("OPERATING COMPANY", "REGIONAL MANAGEMENT"), st))]
    return story


def _minor_capital_story(record: dict, view: dict, summary: dict, st: dict) -> list:
    story = [_field_grid([
        ("Operating Company", view["operating_company"]),
        ("Department", view["department"] or summary["display_department"]),
        ("Date", view["date"] or summary["effective_date"]),
        ("Name", view["name"] or summary["display_name"]),
        ("Email", view["email"]),
        ("Country", view["country"]),
        ("Currency", view["currency"]),
    ], st)]

    story += [_section("Purpose", st), _checklist(view["purpose"], st),
              _section("Project Summary", st), _p(view["project_summary"], st["body"])]

    rows = [[i["car_number"], i["start_date"], i["description"], _money(i["capital"]),
             _money(i["expense"]), _money(i["lease"]), _money(i["total"])]
            for i in view["items"]]
    totals = view["totals"]
    rows.append(["TOTAL", "", "", _money(totals["capital"]), _money(totals["expense"]),
                 _money(totals["lease"]), _money(totals["total"])])
    story += [_section("Projects", st), _data_table(
        ["CAR#", "Start Date", "Description", "Capital", "Expense", "Lease", "Total"],
        rows, st, _widths(0.1, 0.12, 0.3, 0.12, 0.12, 0.12, 0.12),
        numeric_cols=(3, 4, 5, 6), total_rows=1)]

    story += [_section("Approval", st),
              KeepTogether(_sign_off(("OPERATING COMPANY", "REGIONAL MANAGEMENT"), st))]
    return story


def _generic_story(record: dict, view: dict, summary: dict, st: dict) -> list:
    story = [_field_grid([
        ("User", summary["display_name"] or record.get("owner_name")),
        ("Department", summary["display_department"]),
        ("Status", record.get("status") or ""),
        ("Date", summary["effective_date"]),
    ], st)]
    fields = view.get("fields") or [("(no details)", "")]
    story += [_section("Details", st),
              _data_table(["Field", "Value"], [list(f) for f in fields], st, _widths(0.35, 0.65))]
    return story


RENDERERS = {
    PURCHASE_REQUEST: _purchase_request_story,
    TRAVEL_REQUEST: _travel_request_story,
    MAJOR_CAPITAL_REQUEST: _major_capital_story,
    MINOR_CAPITAL_REQUEST: _minor_capital_story,
}


# ═══════════════════════════════════════════════════════════════════════════════
# Public API
# ═══════════════════════════════════════════════════════════════════════════════

def render_form_pdf(record: dict) -> bytes:
    """Render a form record to PDF bytes. Any failure raises RenderError."""
    if not isinstance(record, dict):
        raise RenderError("No form record to render")
    form_id = record.get("id")
    raw_type = record.get("form_type") or record.get("form_name")

    try:
        form_type = resolve_form_type(raw_type)
        view = canonical_details(raw_type, record.get("details"))
        summary = normalize(record)
        st = _styles()
        builder = RENDERERS.get(form_type, _generic_story)
        story = _header(record, form_type, st) + builder(record, view, summary, st)

        buffer = BytesIO()
        doc = SimpleDocTemplate(
            buffer,
            pagesize=PAGE_SIZE,
            title=f"{form_title(raw_type)} #{form_id}",
            author=COMPANY_NAME,
            leftMargin=MARGIN,
            rightMargin=MARGIN,
            topMargin=MARGIN,
            bottomMargin=20 * mm,
        )
        footer = functools.partial(_footer, record=record)
        doc.build(story, onFirstPage=footer, onLaterPages=footer)
        pdf = buffer.getvalue()
    except Exception as e:
        log.error("Render failed for form #%s (%s): %s", form_id, raw_type, e, exc_info=True)
        raise RenderError(f"Failed to generate PDF for form {form_id}") from e

    log.info("Rendered form #%s (%s): %d bytes, total=%s",
             form_id, form_type or "generic", len(pdf), _money(summary["computed_total"]))
    return pdf
