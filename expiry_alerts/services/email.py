import html
import logging
import os
from dataclasses import dataclass
from datetime import datetime
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Optional

import aiosmtplib

from expiry_alerts.config import Settings
from expiry_alerts.exceptions import PermanentSendFailure, TransientSendFailure
from expiry_alerts.models.employee import DocumentType
from expiry_alerts.models.notification import Severity

logger = logging.getLogger(__name__)

DOCUMENT_LABELS = {
    DocumentType.VISA: "Visa",
    DocumentType.PASSPORT: "Passport",
    DocumentType.LABOUR_CARD: "Labour Card",
}

# (text colour, background) per severity
SEVERITY_COLORS = {
    Severity.ERROR: ("#dc2626", "#fef2f2"),
    Severity.WARNING: ("#ea580c", "#fff7ed"),
    Severity.INFO: ("#0284c7", "#f0f9ff"),
    Severity.SUCCESS: ("#059669", "#ecfdf5"),
}

SEVERITY_COPY = {
    Severity.ERROR: "Immediate action required: start or chase the renewal today.",
    Severity.WARNING: "Renewal should be under way. Confirm the application has been submitted.",
    Severity.INFO: "Plan the renewal and collect the required documents.",
}


@dataclass
class RenderedEmail:
    subject: str
    html: str
    text: str


class EmailService:
    """Service for sending expiry alerts over SMTP (mocked without credentials)"""

    def __init__(self, config: Settings):
        self.smtp_host = config.SMTP_HOST
        self.smtp_port = config.SMTP_PORT
        self.smtp_user = config.SMTP_USER
        self.smtp_password = config.SMTP_PASSWORD
        self.use_tls = config.SMTP_USE_TLS
        self.email_from = config.EMAIL_FROM
        self.from_name = config.EMAIL_FROM_NAME
        self.disabled = config.EMAILS_DISABLED
        self.timeout = config.SEND_TIMEOUT_SECONDS
        self.dashboard_url = config.DASHBOARD_URL
        self.company_name = config.APP_NAME

        # Path to templates
        self.template_dir = os.path.join(os.path.dirname(os.path.dirname(__file__)), "templates", "emails")

    @property
    def is_configured(self) -> bool:
        return bool(self.smtp_user and self.smtp_password)

    def _get_template(self, template_name: str) -> Optional[str]:
        """Read an HTML template from file"""
        try:
            with open(os.path.join(self.template_dir, f"{template_name}.html"), "r") as f:
                return f.read()
        except OSError as e:
            logger.error(f"[Email] Error reading template {template_name}: {e}")
            return None

    def render_document_expiry(
        self,
        employee_name: str,
        employee_id: str,
        document_type: DocumentType,
        expiry_date: datetime,
        days_remaining: int,
        urgency: str,
        severity: Severity
    ) -> RenderedEmail:
        label = DOCUMENT_LABELS[DocumentType(document_type)]
        color, background = SEVERITY_COLORS[severity]
        intro = SEVERITY_COPY.get(severity, SEVERITY_COPY[Severity.INFO])
        expiry_text = expiry_date.strftime("%d %b, %Y")
        day_word = "Day" if days_remaining == 1 else "Days"
        subject = f"{label.upper()} EXPIRY {urgency}: {employee_name} - {days_remaining} {day_word} Remaining"

        text = (
            f"{label} for {employee_name} ({employee_id}) expires on {expiry_text}, "
            f"{days_remaining} day(s) from today. {intro}"
        )

        template = self._get_template("document_expiry")
        if not template:
            # Fallback to simple HTML if template missing
            return RenderedEmail(subject, f"<h2>{html.escape(subject)}</h2><p>{html.escape(text)}</p>", text)

        content = template.replace("{{name}}", html.escape(employee_name))
        content = content.replace("{{employee_id}}", html.escape(employee_id))
        content = content.replace("{{document_label}}", label)
        content = content.replace("{{urgency}}", urgency)
        content = content.replace("{{days}}", str(days_remaining))
        content = content.replace("{{expiry_date}}", expiry_text)
        content = content.replace("{{intro}}", intro)
        content = content.replace("{{color}}", color)
        content = content.replace("{{background}}", background)
        content = content.replace("{{company_name}}", self.company_name)
        content = content.replace("{{dashboard_url}}", self.dashboard_url)
        content = content.replace("{{year}}", str(datetime.now().year))
        return RenderedEmail(subject, content, text)

    async def send_email(self, to_email: str, subject: str, html_content: str, text_content: Optional[str] = None) -> None:
        """
        Deliver one message. Raises TransientSendFailure or
        PermanentSendFailure; returns normally on success.
        """
        if not to_email:
            raise PermanentSendFailure("No recipient address")

        if self.disabled or not self.is_configured:
            reason = "EMAILS_DISABLED" if self.disabled else "no SMTP credentials"
            logger.info(f"[Email] MOCK ({reason}) to {to_email}: {subject} (HTML length {len(html_content)})")
            return

        message = MIMEMultipart("alternative")
        message["From"] = f"{self.from_name} <{self.email_from}>"
        message["To"] = to_email
        message["Subject"] = subject
        if text_content:
            message.attach(MIMEText(text_content, "plain"))
        message.attach(MIMEText(html_content, "html"))

        try:
            await aiosmtplib.send(
                message,
                hostname=self.smtp_host,
                port=self.smtp_port,
                username=self.smtp_user,
                password=self.smtp_password,
                start_tls=self.use_tls,
                timeout=self.timeout
            )
        except aiosmtplib.SMTPRecipientsRefused as e:
            raise PermanentSendFailure(f"Recipient refused: {e}", recipient=to_email) from e
        except aiosmtplib.SMTPAuthenticationError as e:
            raise TransientSendFailure(f"SMTP authentication failed: {e}", recipient=to_email) from e
        except aiosmtplib.SMTPResponseException as e:
            if e.code >= 500:
                raise PermanentSendFailure(f"Rejected by provider ({e.code}): {e.message}", recipient=to_email) from e
            raise TransientSendFailure(f"Provider deferred ({e.code}): {e.message}", recipient=to_email) from e
        except (aiosmtplib.SMTPException, OSError) as e:
            raise TransientSendFailure(f"SMTP delivery failed: {e}", recipient=to_email) from e

        logger.info(f"[Email/SMTP] Sent to {to_email}: {subject}")
