"""
Service d'envoi d'emails SMTP.
Utilisé pour transmettre sa clé de monitoring à un observateur (QR code en ligne).

Le message est un multipart/related : une alternative texte / HTML, puis le QR code
en PNG référencé depuis le HTML par son Content-ID.
"""

import logging
import smtplib
from email.message import Message
from email.mime.image import MIMEImage
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Optional

from pollwatch.config import settings

logger = logging.getLogger(__name__)

KEY_EMAIL_SUBJECT = "PollWatch: your election monitoring key"
QR_CONTENT_ID = "monitorkey"
QR_FILENAME = "monitor-key.png"

KEY_EMAIL_TEXT = """{greeting}

You have been assigned a monitoring key for {scope_label}.

    {monitor_key}

Enter this key in the app to unlock the monitoring forms. Keep it private: it is tied to your account.
"""

KEY_EMAIL_HTML = """
<html>
  <body style="font-family: Arial, sans-serif; color: #333; max-width: 600px; margin: auto;">
    <h2 style="color: #0b7a3e;">PollWatch: Election Monitoring Key</h2>
    <p>{greeting}</p>
    <p>You have been assigned a monitoring key for <strong>{scope_label}</strong>.</p>
    <p style="font-size: 28px; letter-spacing: 6px; text-align: center;"><strong>{monitor_key}</strong></p>
    <p>
      Enter this key (or scan the QR code below) in the app to unlock the monitoring forms.
      Keep it private: it is tied to your account.
    </p>
    <div style="text-align: center; margin: 24px 0;">
      <img src="cid:{content_id}" alt="Monitoring key QR code" style="width: 220px; height: 220px;" />
    </div>
    <hr style="border: none; border-top: 1px solid #eee;" />
    <p style="font-size: 12px; color: #888;">
      This message was generated automatically by PollWatch. Please do not reply.
    </p>
  </body>
</html>
"""


def _message_with_inline_image(
    to_email: str,
    subject: str,
    text: str,
    html: str,
    image_bytes: bytes,
    content_id: str,
    filename: str,
) -> MIMEMultipart:
    """Assemble related(alternative(texte, HTML), image) ; le HTML cite l'image par cid:<content_id>."""
    body = MIMEMultipart("alternative")
    body.attach(MIMEText(text, "plain", "utf-8"))
    body.attach(MIMEText(html, "html", "utf-8"))

    image = MIMEImage(image_bytes, name=filename)
    image.add_header("Content-ID", f"<{content_id}>")
    image.add_header("Content-Disposition", "inline", filename=filename)

    msg = MIMEMultipart("related")
    msg["From"] = settings.SMTP_FROM
    msg["To"] = to_email
    msg["Subject"] = subject
    msg.attach(body)
    msg.attach(image)
    return msg


def _deliver(msg: Message) -> None:
    """Envoi via le relais configuré (STARTTLS et authentification optionnels)."""
    with smtplib.SMTP(settings.SMTP_HOST, settings.SMTP_PORT) as server:
        if settings.SMTP_USE_TLS:
            server.starttls()
        if settings.SMTP_USERNAME:
            server.login(settings.SMTP_USERNAME, settings.SMTP_PASSWORD)
        server.send_message(msg)


def send_monitor_key_email(
    to_email: str,
    recipient_name: Optional[str],
    monitor_key: str,
    scope_label: str,
    qr_image_bytes: bytes,
) -> None:
    """
    Envoie la clé de monitoring en clair et en QR code intégré.
    Lève une exception en cas d'échec SMTP.
    """
    fields = {
        "greeting": f"Hello {recipient_name}," if recipient_name else "Hello,",
        "scope_label": scope_label,
        "monitor_key": monitor_key,
        "content_id": QR_CONTENT_ID,
    }
    msg = _message_with_inline_image(
        to_email,
        KEY_EMAIL_SUBJECT,
        KEY_EMAIL_TEXT.format(**fields),
        KEY_EMAIL_HTML.format(**fields),
        qr_image_bytes,
        QR_CONTENT_ID,
        QR_FILENAME,
    )
    _deliver(msg)
    logger.info("Email de clé de monitoring envoyé à %s", to_email)
