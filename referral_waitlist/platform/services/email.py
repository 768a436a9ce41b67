import smtplib
import ssl
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText

import requests

from referral_waitlist.platform.config import settings
from referral_waitlist.platform.logger import get_logger

logger = get_logger("email_service")


class EmailDeliveryError(Exception):
    pass


def send_email(to_email: str, subject: str, body: str):
    """
    Send an HTML email through the HTTP relay, falling back to direct SMTP
    when the relay is not configured or fails.
    """
    if settings.EMAIL_RELAY_URL and settings.EMAIL_RELAY_API_KEY:
        try:
            send_email_via_relay(to_email, subject, body)
            return
        except EmailDeliveryError as e:
            logger.error(f"Email relay failed: {e}")
            logger.info("Attempting direct SMTP as fallback...")
    else:
        logger.warning("Email relay not configured, attempting direct SMTP")

    send_email_direct_smtp(to_email, subject, body)


def send_email_via_relay(to_email: str, subject: str, body: str):
    payload = {
        "to_email": to_email,
        "subject": subject,
        "body": body,
        "from_address": settings.MAIL_FROM_ADDRESS,
    }
    headers = {
        "X-API-Key": settings.EMAIL_RELAY_API_KEY,
        "Content-Type": "application/json",
    }

    try:
        response = requests.post(
            settings.EMAIL_RELAY_URL,
            json=payload,
            headers=headers,
            timeout=settings.EMAIL_RELAY_TIMEOUT,
        )
        response.raise_for_status()
    except requests.exceptions.Timeout as e:
        raise EmailDeliveryError(f"Email relay timeout for {to_email}") from e
    except requests.exceptions.RequestException as e:
        if e.response is not None:
            logger.error(f"Relay responded {e.response.status_code}: {e.response.text}")
        raise EmailDeliveryError(f"Email relay service error: {e}") from e

    logger.info(f"Email sent via relay to {to_email}")


def send_email_direct_smtp(to_email: str, subject: str, body: str):
    msg = MIMEMultipart("alternative")
    msg["Subject"] = subject
    msg["From"] = settings.MAIL_FROM_ADDRESS
    msg["To"] = to_email
    msg.attach(MIMEText(body, "html"))

    port = settings.MAIL_PORT
    try:
        if port == 465:
            context = ssl.create_default_context()
            with smtplib.SMTP_SSL(settings.MAIL_HOST, port, context=context) as server:
                server.login(settings.MAIL_USERNAME, settings.MAIL_PASSWORD)
                server.sendmail(settings.MAIL_FROM_ADDRESS, to_email, msg.as_string())
        else:
            with smtplib.SMTP(settings.MAIL_HOST, port) as server:
                server.ehlo()
                if str(settings.MAIL_ENCRYPTION).upper() in ["TLS", "TRUE"]:
                    server.starttls()
                    server.ehlo()
                server.login(settings.MAIL_USERNAME, settings.MAIL_PASSWORD)
                server.sendmail(settings.MAIL_FROM_ADDRESS, to_email, msg.as_string())
    except (smtplib.SMTPException, OSError) as e:
        raise EmailDeliveryError(f"SMTP delivery to {to_email} failed: {e}") from e
