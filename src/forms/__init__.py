"""Form records: types, lifecycle, normalization and PDF rendering.

Key exports:
    lifecycle.create_form()      — Validate and store a new form
    lifecycle.transition_form()  — Draft → Waiting For Approve → Approved/Rejected
    details.normalize()          — Display name, department, date and total for any record
    render_form_pdf()            — Per-type A4 PDF of a form record
"""
