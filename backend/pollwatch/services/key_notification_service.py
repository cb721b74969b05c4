"""
Notification d'une clé de monitoring fraîchement émise.

Flux :
  1. Ignorer si l'envoi est désactivé (SEND_KEY_EMAILS), si la clé était déjà
     assignée, ou si l'utilisateur n'a pas d'email
  2. Générer l'image QR code de la clé en mémoire
  3. Envoyer l'email ; un échec SMTP est consigné mais n'annule jamais l'émission
"""

import io
import logging

import qrcode

from pollwatch.config import settings
from pollwatch.models.user import User
from pollwatch.schemas.monitor_key import KeyIssueResult
from pollwatch.schemas.scope import MonitoringScope
from pollwatch.services.email_service import send_monitor_key_email

logger = logging.getLogger(__name__)


def generate_qr_image(payload: str) -> bytes:
    """Génère une image PNG du QR code encodant la valeur donnée."""
    qr = qrcode.QRCode(version=1, box_size=10, border=4)
    qr.add_data(payload)
    qr.make(fit=True)
    img = qr.make_image(fill_color="black", back_color="white")
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()


def describe_scope(scope: MonitoringScope) -> str:
    """Libellé lisible du scope, du niveau le plus fin au plus large."""
    if scope.level == "national":
        return "Nigeria (national)"
    labels = [
        field.label
        for field in (scope.polling_unit, scope.ward, scope.lga, scope.state)
        if field is not None
    ]
    return ", ".join(labels)


def notify_key_assigned(user: User, result: KeyIssueResult) -> bool:
    """
    Envoie la clé à son titulaire. Retourne True si un email est parti.
    Ne lève jamais : l'émission de la clé est déjà commitée.
    """
    if not settings.SEND_KEY_EMAILS or result.already_assigned:
        return False
    if not user.email:
        logger.info("Utilisateur %s sans email, clé non notifiée", user.id)
        return False

    try:
        qr_bytes = generate_qr_image(result.key)
        send_monitor_key_email(
            to_email=user.email,
            recipient_name=user.name,
            monitor_key=result.key,
            scope_label=describe_scope(result.scope) if result.scope else "your area",
            qr_image_bytes=qr_bytes,
        )
    except Exception as exc:
        logger.error("Erreur envoi email de clé à %s : %s", user.email, exc)
        return False

    return True
