"""
Email notifications for Contract Desk.

Implements SMTP sending with TLS and the message templates for ticket events:
- New ticket (sent to the other users of the tenant)
- New ticket with full context (sent to the operational mailbox)
- New message on a ticket (sent to the other users of the tenant)

Notifications are best-effort. Callers dispatch them in the background and a
failure never affects the ticket operation that triggered it.
"""

import logging
import smtplib
from dataclasses import dataclass
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from html import escape
from typing import Optional

from .config import EmailConfig
from .models import Ticket
from .store import SupabaseStore


logger = logging.getLogger(__name__)


class EmailSenderError(Exception):
    """Error during email sending."""
    pass


@dataclass(frozen=True)
class NotificationTemplate:
    """Rendered email subject and HTML body."""

    subject: str
    body: str


class SMTPEmailSender:
    """
    SMTP-based email sender with TLS encryption.

    Security:
        - Uses STARTTLS for encryption
        - Credentials loaded from environment variables
    """

    def __init__(self, config: EmailConfig):
        """
        Initialize SMTP sender.

        Args:
            config: Email configuration with SMTP settings.
        """
        self._config = config

    def send(self, to_email: str, subject: str, html_body: str) -> bool:
        """
        Send an HTML email via SMTP with TLS.

        An unconfigured sender skips the message with a warning.

        Args:
            to_email: Recipient email address.
            subject: Email subject line.
            html_body: Email body (HTML).

        Returns:
            True if sent, False if skipped because SMTP is not configured.

        Raises:
            EmailSenderError: If sending fails.
        """
        if not self._config.is_configured:
            logger.warning(f"SMTP not configured, skipping email to {to_email}: {subject}")
            return False

        logger.info(f"Sending email to {to_email} via SMTP")

        try:
            msg = MIMEMultipart("alternative")
            msg["From"] = f"{self._config.from_name} <{self._config.from_email}>"
            msg["To"] = to_email
            msg["Subject"] = subject
            msg.attach(MIMEText(html_body, "html", "utf-8"))

            with smtplib.SMTP(self._config.smtp_host, self._config.smtp_port) as server:
                if self._config.smtp_use_tls:
                    server.starttls()

                server.login(
                    self._config.smtp_username,
                    self._config.smtp_password
                )
                server.send_message(msg)

            logger.info(f"Email sent successfully to {to_email}")
            return True

        except smtplib.SMTPAuthenticationError as e:
            logger.error(f"SMTP authentication failed: {e}")
            raise EmailSenderError("SMTP authentication failed") from e
        except smtplib.SMTPException as e:
            logger.error(f"SMTP error: {e}")
            raise EmailSenderError(f"SMTP error: {e}") from e
        except OSError as e:
            logger.error(f"Connection error sending email: {e}")
            raise EmailSenderError(f"Failed to send email: {e}") from e


def render_email(header: str, paragraphs: list[str], action_url: Optional[str] = None) -> str:
    """
    Wrap already-escaped paragraphs in the standard email layout.

    Args:
        header: Heading text (escaped here).
        paragraphs: HTML paragraph contents.
        action_url: Optional link for the "View Ticket" button.

    Returns:
        Complete HTML document.
    """
    content = "\n".join(f"<p>{p}</p>" for p in paragraphs)
    button = (
        f'<a href="{escape(action_url, quote=True)}" class="button">View Ticket</a>'
        if action_url else ""
    )
    return f"""<!DOCTYPE html>
<html>
  <head><meta charset="utf-8"></head>
  <body style="font-family: Arial, sans-serif; color: #333; max-width: 600px; margin: 0 auto;">
    <h1 style="color: #1e293b;">{escape(header)}</h1>
    <div class="content">
{content}
    </div>
    {button}
    <div class="footer" style="margin-top: 30px; font-size: 12px; color: #94a3b8;">
      <p>This is an automated notification from Contract Desk.</p>
      <p>If you have any questions, please contact your administrator.</p>
    </div>
  </body>
</html>
"""


def ticket_url(portal_url: str, ticket_id: str) -> str:
    return f"{portal_url.rstrip('/')}/workspace/tickets/{ticket_id}"


def ticket_created_template(ticket: Ticket, tenant_name: str, portal_url: str) -> NotificationTemplate:
    """Build the notification other tenant users receive for a new ticket."""
    return NotificationTemplate(
        subject=f"New Ticket Created: {ticket.title}",
        body=render_email(
            "New Ticket Created",
            [
                f"A new ticket has been created in <strong>{escape(tenant_name)}</strong>.",
                f"<strong>Ticket:</strong> {escape(ticket.title)}",
                f"<strong>Ticket ID:</strong> {escape(ticket.id)}",
                "You can view and respond to this ticket in your dashboard.",
            ],
            ticket_url(portal_url, ticket.id),
        ),
    )


def admin_ticket_template(
    ticket: Ticket,
    tenant_name: str,
    creator_email: str,
    initial_message: Optional[str],
    portal_url: str,
) -> NotificationTemplate:
    """Build the full-context notification for the operational mailbox."""
    paragraphs = [
        f"<strong>Tenant:</strong> {escape(tenant_name)} ({escape(ticket.tenant_id)})",
        f"<strong>Ticket:</strong> {escape(ticket.title)}",
        f"<strong>Ticket ID:</strong> {escape(ticket.id)}",
        f"<strong>Priority:</strong> {escape(ticket.priority)}",
        f"<strong>Status:</strong> {escape(ticket.status)}",
        f"<strong>Created by:</strong> {escape(creator_email)}",
        f"<strong>Contract item:</strong> {escape(ticket.contract_item_id or 'Others')}",
    ]
    if initial_message:
        message_html = escape(initial_message).replace("\n", "<br>")
        paragraphs.append(f"<strong>Message:</strong><br>{message_html}")

    return NotificationTemplate(
        subject=f"[{tenant_name}] New {ticket.priority} ticket: {ticket.title}",
        body=render_email("New Ticket", paragraphs, ticket_url(portal_url, ticket.id)),
    )


def message_added_template(
    ticket: Ticket,
    tenant_name: str,
    author_email: str,
    portal_url: str,
) -> NotificationTemplate:
    """Build the notification for a new non-internal message."""
    return NotificationTemplate(
        subject=f"New Message on Ticket: {ticket.title}",
        body=render_email(
            "New Message",
            [
                f"A new message has been added to a ticket in <strong>{escape(tenant_name)}</strong>.",
                f"<strong>Ticket:</strong> {escape(ticket.title)}",
                f"<strong>From:</strong> {escape(author_email)}",
                f"<strong>Ticket ID:</strong> {escape(ticket.id)}",
            ],
            ticket_url(portal_url, ticket.id),
        ),
    )


class TicketNotifier:
    """
    Sends ticket notifications, looking up recipients in the store.

    Each method raises on failure; the background dispatcher running it is
    responsible for logging.
    """

    def __init__(self, store: SupabaseStore, config: EmailConfig, sender: Optional[SMTPEmailSender] = None):
        self._store = store
        self._config = config
        self._sender = sender or SMTPEmailSender(config)

    def _tenant_name(self, tenant_id: str) -> str:
        return self._store.get_tenant_name(tenant_id) or "Unknown Tenant"

    def notify_tenant_users(self, ticket: Ticket, exclude_user_id: str) -> int:
        """
        Email every other user of the ticket's tenant about a new ticket.

        Returns:
            Number of emails sent.
        """
        recipients = self._store.list_tenant_user_emails(ticket.tenant_id, exclude_user_id)
        if not recipients:
            return 0

        template = ticket_created_template(ticket, self._tenant_name(ticket.tenant_id), self._config.portal_url)
        sent = 0
        failures = []
        for email in recipients:
            try:
                if self._sender.send(email, template.subject, template.body):
                    sent += 1
            except EmailSenderError as e:
                failures.append(f"{email}: {e}")

        if failures:
            raise EmailSenderError(
                f"Failed to notify {len(failures)} of {len(recipients)} users: {'; '.join(failures)}"
            )
        return sent

    def notify_admin(self, ticket: Ticket, initial_message: Optional[str] = None) -> bool:
        """Email the operational mailbox with full ticket context."""
        if not self._config.admin_notification_email:
            logger.debug("ADMIN_NOTIFICATION_EMAIL not set, skipping admin notification")
            return False

        creator_email = self._store.get_user_email(ticket.created_by) or "Unknown"
        template = admin_ticket_template(
            ticket,
            self._tenant_name(ticket.tenant_id),
            creator_email,
            initial_message,
            self._config.portal_url,
        )
        return self._sender.send(self._config.admin_notification_email, template.subject, template.body)

    def notify_message_added(self, ticket: Ticket, author_id: str) -> int:
        """Email the other tenant users about a new non-internal message."""
        author_email = self._store.get_user_email(author_id)
        if not author_email:
            logger.warning(f"No email for message author {author_id}, skipping comment notifications")
            return 0

        recipients = self._store.list_tenant_user_emails(ticket.tenant_id, author_id)
        template = message_added_template(
            ticket,
            self._tenant_name(ticket.tenant_id),
            author_email,
            self._config.portal_url,
        )
        sent = 0
        failures = []
        for email in recipients:
            try:
                if self._sender.send(email, template.subject, template.body):
                    sent += 1
            except EmailSenderError as e:
                failures.append(f"{email}: {e}")

        if failures:
            raise EmailSenderError(
                f"Failed to notify {len(failures)} of {len(recipients)} users: {'; '.join(failures)}"
            )
        return sent
