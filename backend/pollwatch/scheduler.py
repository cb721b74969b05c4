"""
Planificateur APScheduler pour le rattrapage automatique des clés de monitoring.

Le job balaye périodiquement les utilisateurs éligibles sans clé active
(profil complété après l'inscription) et leur émet une clé.
Désactivé par défaut : voir KEY_BACKFILL_ENABLED.
"""

import logging

from apscheduler.schedulers.background import BackgroundScheduler

from pollwatch.config import settings
from pollwatch.database import SessionLocal

logger = logging.getLogger(__name__)

scheduler = BackgroundScheduler()


def _backfill_keys_scheduled() -> None:
    """
    Tâche planifiée : un balayage de backfill par exécution.
    Import local pour éviter les imports circulaires.
    """
    from pollwatch.services.monitor_key_service import backfill_monitor_keys

    db = SessionLocal()
    try:
        report = backfill_monitor_keys(db, settings.KEY_BACKFILL_BATCH_SIZE)
        logger.info(
            "Backfill planifié : %d candidats, %d assignées, %d ignorées, %d échecs",
            report.total, report.assigned, report.skipped, report.failed,
        )
    except Exception as exc:
        logger.error("Erreur lors du backfill planifié des clés : %s", exc, exc_info=True)
    finally:
        db.close()


def start_scheduler() -> None:
    """Démarre le planificateur en arrière-plan (appelé au démarrage de l'API)."""
    if not settings.KEY_BACKFILL_ENABLED:
        logger.info("Backfill des clés désactivé, scheduler non démarré.")
        return

    scheduler.add_job(
        _backfill_keys_scheduled,
        trigger="interval",
        minutes=settings.KEY_BACKFILL_INTERVAL_MINUTES,
        id="monitor_key_backfill",
        replace_existing=True,
    )
    scheduler.start()
    logger.info(
        "Scheduler démarré : backfill des clés toutes les %d minutes.",
        settings.KEY_BACKFILL_INTERVAL_MINUTES,
    )


def stop_scheduler() -> None:
    """Arrête le planificateur proprement (appelé à l'arrêt de l'API)."""
    if scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("Scheduler arrêté.")
