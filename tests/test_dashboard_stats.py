"""Tests for the admin dashboard aggregation."""

from datetime import datetime

from src.forms.dashboard_stats import MONTHS, build_dashboard_stats


def _row(form_type, status, details, department="Finance", form_id=1):
    return {"id": form_id, "form_type": form_type, "owner_name": "Nok Pimchanok",
            "department": department, "status": status, "details": details,
            "request_date": "2024-11-02T10:00:00"}


class TestDashboardStats:
    def test_drafts_are_not_counted(self, sample_purchase_request):
        stats = build_dashboard_stats([_row("PurchaseRequest", "Draft", sample_purchase_request)])
        assert stats["summary"]["totalForms"] == 0
        assert stats["departments"] == []
        assert stats["formTypes"] == []

    def test_approved_and_pending_totals(self, sample_purchase_request, sample_travel_request,
                                         sample_minor_capital):
        forms = [
            _row("PurchaseRequest", "Approved", sample_purchase_request),
            _row("TravelRequest", "Waiting For Approve", sample_travel_request),
            _row("MinorCapitalRequest", "Rejected", sample_minor_capital),
        ]
        summary = build_dashboard_stats(forms, year=2025)["summary"]
        assert summary["totalForms"] == 3
        assert summary["totalValueApproved"] == 620.0
        assert summary["totalValuePending"] == 40000.0
        assert summary["formsByStatus"] == {"Approved": 1, "Waiting For Approve": 1, "Rejected": 1}

    def test_department_from_details_wins(self, sample_travel_request, sample_purchase_request):
        forms = [
            _row("TravelRequest", "Approved", sample_travel_request, department="IT"),
            _row("PurchaseRequest", "Approved", sample_purchase_request, department="IT"),
        ]
        departments = build_dashboard_stats(forms, year=2025)["departments"]
        assert departments == [
            {"department": "Sales", "count": 1, "total": 40000.0},
            {"department": "Finance", "count": 1, "total": 620.0},
        ]

    def test_missing_department_is_unassigned(self):
        stats = build_dashboard_stats([_row("PurchaseRequest", "Approved", {}, department="")])
        assert stats["departments"][0]["department"] == "Unassigned"

    def test_form_types_use_titles(self, sample_major_capital):
        stats = build_dashboard_stats([_row("MajorCapitalRequest", "Approved", sample_major_capital)])
        assert stats["formTypes"] == [
            {"formType": "Major Capital Authorization Request", "count": 1, "total": 185000.0},
        ]

    def test_timeline_buckets_by_effective_month(self, sample_purchase_request,
                                                  sample_travel_request):
        forms = [
            _row("PurchaseRequest", "Approved", sample_purchase_request),
            _row("TravelRequest", "Approved", sample_travel_request),
        ]
        timeline = build_dashboard_stats(forms, year=2025)["timeline"]
        assert timeline["year"] == 2025
        assert timeline["labels"] == MONTHS
        assert timeline["series"]["Purchase Request"][2] == 620.0
        assert timeline["series"]["Travel Request"][4] == 40000.0
        assert sum(timeline["series"]["Minor Capital Authorization Request"]) == 0

    def test_other_years_excluded_from_timeline(self, sample_purchase_request):
        stats = build_dashboard_stats([_row("PurchaseRequest", "Approved", sample_purchase_request)],
                                      year=2024)
        assert sum(stats["timeline"]["series"]["Purchase Request"]) == 0

    def test_request_date_fallback(self):
        # no details.date: the record's request_date decides the bucket
        stats = build_dashboard_stats([_row("PurchaseRequest", "Approved",
                                            {"items": [{"quantity": 1, "cost": 50}]})], year=2024)
        assert stats["timeline"]["series"]["Purchase Request"][10] == 50.0

    def test_years_descending_with_current(self, sample_purchase_request):
        stats = build_dashboard_stats([_row("PurchaseRequest", "Approved", sample_purchase_request),
                                       _row("PurchaseRequest", "Approved", {})])
        years = stats["years"]
        assert years == sorted(years, reverse=True)
        assert {2025, 2024, datetime.now().year} <= set(years)
