"""Outbound email.

Modules:
    mailer        — SMTP transport (ssl / starttls / plain), MIME assembly
    notify_agent  — Approval request and password reset emails
"""
