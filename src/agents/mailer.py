"""
SMTP transport for outbound portal email.

A draft is a plain dict:
    {"to", "subject", "body", "body_html",
     "attachments": [{"filename", "content": bytes, "mime": "application/pdf"}],
     "inline_images": [{"cid", "filename", "content": bytes}]}
"""

import logging
import smtplib
from email.mime.application import MIMEApplication
from email.mime.image import MIMEImage
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import formataddr

from src.core.errors import SendError
from src.core.secrets import get_key, mask

log = logging.getLogger("forms.notify")


class EmailSender:
    """Send portal emails via SMTP (ssl, starttls or plain)."""

    def __init__(self, config: dict = None):
        config = config or {}
        self.smtp_host = config.get("smtp_host") or get_key("smtp_host")
        self.smtp_port = int(config.get("smtp_port") or get_key("smtp_port") or 587)
        self.security = (config.get("smtp_secure") or get_key("smtp_secure") or "starttls").lower()
        self.username = config.get("smtp_user", get_key("smtp_user"))
        self.password = config.get("smtp_password", get_key("smtp_password"))
        self.email_addr = config.get("email") or get_key("mail_from")
        self.from_name = config.get("from_name") or get_key("mail_from_name")
        self.timeout = config.get("timeout", 30)

    def build_message(self, draft: dict) -> MIMEMultipart:
        msg = MIMEMultipart("mixed")
        msg["From"] = formataddr((self.from_name, self.email_addr))
        msg["To"] = draft["to"]
        msg["Subject"] = draft["subject"]

        alt = MIMEMultipart("alternative")
        alt.attach(MIMEText(draft.get("body", ""), "plain", "utf-8"))
        if draft.get("body_html"):
            alt.attach(MIMEText(draft["body_html"], "html", "utf-8"))

        inline = draft.get("inline_images") or []
        if inline:
            # HTML references inline images by cid:, so they share a related part
            related = MIMEMultipart("related")
            related.attach(alt)
            for img in inline:
                try:
                    part = MIMEImage(img["content"], _subtype=img.get("subtype"))
                except TypeError:
                    # MIMEImage could not sniff the format and no subtype was given
                    log.warning("Skipping inline image %s: unrecognised image format",
                                img.get("cid"))
                    continue
                part.add_header("Content-ID", f"<{img['cid']}>")
                part.add_header("Content-Disposition", "inline", filename=img.get("filename", "image"))
                related.attach(part)
            msg.attach(related)
        else:
            msg.attach(alt)

        for att in draft.get("attachments", []):
            subtype = att.get("mime", "application/octet-stream").split("/", 1)[-1]
            part = MIMEApplication(att["content"], _subtype=subtype)
            part.add_header("Content-Disposition", "attachment", filename=att["filename"])
            msg.attach(part)
        return msg

    def send(self, draft: dict) -> bool:
        if not self.smtp_host:
            raise SendError("Mail transport is not configured")
        msg = self.build_message(draft)

        try:
            if self.security == "ssl":
                server = smtplib.SMTP_SSL(self.smtp_host, self.smtp_port, timeout=self.timeout)
            else:
                server = smtplib.SMTP(self.smtp_host, self.smtp_port, timeout=self.timeout)
            with server:
                if self.security == "starttls":
                    server.starttls()
                if self.username:
                    server.login(self.username, self.password)
                server.send_message(msg)
        except (smtplib.SMTPException, OSError) as e:
            log.error("SMTP send to %s via %s:%d (user %s) failed: %s",
                      draft["to"], self.smtp_host, self.smtp_port, mask(self.username), e)
            raise SendError(f"Failed to send email: {e}") from e

        log.info("Email sent to %s: %s (%d attachments)",
                 draft["to"], draft["subject"], len(draft.get("attachments", [])))
        return True
