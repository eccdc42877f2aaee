# routes_stats.py
# Admin dashboard statistics

from flask import jsonify, request

from src.api.dashboard import bp, role_required
from src.core import db
from src.core.errors import ValidationError
from src.core.security import rate_limit
from src.forms.dashboard_stats import build_dashboard_stats


@bp.route("/api/dashboard/stats")
@role_required("admin")
@rate_limit("api")
def api_dashboard_stats():
    year = request.args.get("year")
    if year:
        try:
            year = int(year)
        except ValueError:
            raise ValidationError("year must be a number", field="year")
    return jsonify(build_dashboard_stats(db.list_forms(), year=year or None))
