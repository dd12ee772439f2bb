import httpx
from flask import current_app, render_template

BREVO_SEND_URL = "https://api.brevo.com/v3/smtp/email"


def _send_email(subject, recipient, html_body):
    """Deliver one message through Brevo. Returns True when it was accepted."""
    brevo_key = current_app.config.get("BREVO_API_KEY")
    sender = current_app.config.get("MAIL_DEFAULT_SENDER")
    sender_name = current_app.config.get("MAIL_DEFAULT_SENDER_NAME")
    if not brevo_key:
        current_app.logger.debug("Email skipped (BREVO_API_KEY not configured): %s", subject)
        return False
    try:
        resp = httpx.post(
            BREVO_SEND_URL,
            headers={
                "api-key": brevo_key,
                "Content-Type": "application/json",
                "Accept": "application/json",
            },
            json={
                "sender": {"name": sender_name, "email": sender},
                "to": [{"email": recipient}],
                "subject": subject,
                "htmlContent": html_body,
            },
            timeout=15,
        )
        resp.raise_for_status()
    except httpx.HTTPError as e:
        current_app.logger.error("Failed to send email to %s: %s", recipient, e)
        return False
    return True


def send_issue_code_email(issue, user, book, code):
    html = render_template(
        "email/issue_code.html",
        user=user,
        book=book,
        issue=issue,
        code=code,
        expiry_minutes=current_app.config["OTP_EXPIRY_MINUTES"],
        library_name=current_app.config["LIBRARY_NAME"],
    )
    return _send_email(
        subject=f"Book Issued: {book.title}",
        recipient=user.email,
        html_body=html,
    )


def send_reminder_email(issue, user, book):
    html = render_template(
        "email/due_reminder.html",
        user=user,
        book=book,
        issue=issue,
        library_name=current_app.config["LIBRARY_NAME"],
    )
    return _send_email(
        subject=f"Reminder: {book.title} due soon",
        recipient=user.email,
        html_body=html,
    )
