"""
notify_agent.py — Approval & Account Emails for the Forms Portal

EMAILS:
  ┌──────────────────────────┬──────────────────────────────────────────────┐
  │ Email                    │ Contents                                     │
  ├──────────────────────────┼──────────────────────────────────────────────┤
  │ approval request         │ "<Form Title> Submission", rendered PDF      │
  │                          │ attached, logo inline (cid:logo.nwfth)       │
  │ password reset           │ single-use link, valid 1 hour                │
  └──────────────────────────┴──────────────────────────────────────────────┘

No retries: a transport failure is a SendError straight back to the caller.
"""

import html
import logging
import os

import requests

from src.agents.mailer import EmailSender
from src.core.errors import ValidationError
from src.core.paths import LOGO_PATH
from src.core.secrets import get_key
from src.forms import lifecycle
from src.forms.details import normalize
from src.forms.document_renderer import render_form_pdf
from src.forms.form_types import attachment_name, email_intro, email_subject

log = logging.getLogger("forms.notify")

LOGO_CID = "logo.nwfth"
SIGNATURE = "NWFTH - Forms System"
SENT_MESSAGE = "Email Has been sent To Manager"

_logo_cache = {}


def load_logo() -> bytes | None:
    """Local logo file if shipped, else the remote LOGO_URL, fetched once per process."""
    if "bytes" in _logo_cache:
        return _logo_cache["bytes"]

    data = None
    if os.path.exists(LOGO_PATH):
        with open(LOGO_PATH, "rb") as f:
            data = f.read()
    else:
        url = get_key("logo_url")
        if url:
            try:
                resp = requests.get(url, timeout=10)
                resp.raise_for_status()
                data = resp.content
            except requests.RequestException as e:
                log.warning("Logo fetch from %s failed: %s — sending without logo", url, e)

    if data:
        _logo_cache["bytes"] = data
    return data


def _approval_html(subject: str, requester: str, intro: str, with_logo: bool) -> str:
    logo = (f'<img src="cid:{LOGO_CID}" alt="NWFTH Logo" '
            f'style="max-width:120px;display:block;margin-bottom:0;" />') if with_logo else ""
    return f"""<!DOCTYPE html>
<html>
<head><meta charset="UTF-8" /></head>
<body style="font-family:Arial,sans-serif;color:#333;font-size:14px;margin:0;padding:20px;">
  <div style="text-align:left;margin-bottom:10px;">
    {logo}
    <h1 style="color:#2e5ba6;font-size:18px;font-weight:bold;">{html.escape(subject)}</h1>
  </div>
  <div style="line-height:1.5;">
    <p>Dear,</p>
    <p><strong>({html.escape(requester)})</strong> {html.escape(intro)}</p>
    <p>Please find the attached PDF for more details.</p>
    <p>We kindly request your review and approval at your earliest convenience.</p>
    <p>Thank you for your cooperation.</p>
  </div>
  <div style="margin-top:20px;font-weight:bold;">
    Best regards,<br/>
    {SIGNATURE}
  </div>
</body>
</html>"""


def build_approval_email(form: dict, recipient: str, pdf: bytes) -> dict:
    """Email draft for an approver, with the rendered PDF attached."""
    form_type = form.get("form_type")
    subject = email_subject(form_type)
    intro = email_intro(form_type)
    requester = form.get("owner_name") or normalize(form)["display_name"]
    logo = load_logo()

    draft = {
        "to": recipient,
        "subject": subject,
        "body": (f"Dear,\n\n({requester}) {intro}\n\n"
                 "Please find the attached PDF for more details.\n"
                 "We kindly request your review and approval at your earliest convenience.\n\n"
                 f"Best regards,\n{SIGNATURE}"),
        "body_html": _approval_html(subject, requester, intro, with_logo=bool(logo)),
        "attachments": [{
            "filename": attachment_name(form_type, form["id"]),
            "content": pdf,
            "mime": "application/pdf",
        }],
        "inline_images": [],
    }
    if logo:
        draft["inline_images"].append({"cid": LOGO_CID, "filename": "logo.png", "content": logo})
    return draft


def send_approval_email(form_id: int, recipient: str, sender: EmailSender = None) -> dict:
    """Render form_id and mail it to recipient for approval.

    Raises NotFoundError, RenderError or SendError; never retries.
    """
    recipient = (recipient or "").strip()
    if not recipient or "@" not in recipient:
        raise ValidationError("A valid recipient email is required", field="email")

    form = lifecycle.get_form(form_id)
    pdf = render_form_pdf(form)
    draft = build_approval_email(form, recipient, pdf)
    (sender or EmailSender()).send(draft)

    log.info("Approval email for form #%d (%s) sent to %s", form_id, form["form_type"], recipient)
    return {"ok": True, "message": SENT_MESSAGE, "form_id": form_id, "to": recipient}


def send_password_reset_email(email: str, link: str, name: str = "",
                              sender: EmailSender = None) -> bool:
    body_html = f"""
<h3>Hello {html.escape(name or email)}</h3>
<p>You have requested a password reset for your account</p>
<p>Please click the link below to reset your password:</p>
<a href="{html.escape(link, quote=True)}">Reset Password</a>
<p>This link will expire in 1 hour</p>
"""
    draft = {
        "to": email,
        "subject": "Password Reset Request",
        "body": (f"Hello {name or email},\n\nReset your password here (valid for 1 hour):\n"
                 f"{link}\n\n{SIGNATURE}"),
        "body_html": body_html,
        "attachments": [],
    }
    return (sender or EmailSender()).send(draft)
