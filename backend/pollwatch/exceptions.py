"""
Erreurs métier typées du sous-système de monitoring électoral.

Toutes héritent de ValueError (convention des services : les routers
interceptent ValueError et la traduisent en HTTPException). Chaque erreur
porte un `code` stable et le statut HTTP à renvoyer.
"""

from typing import List, Optional


class MonitoringError(ValueError):
    code = "MONITORING_ERROR"
    http_status = 400

    def __init__(self, message: str, missing: Optional[List[str]] = None):
        super().__init__(message)
        self.message = message
        self.missing = list(missing) if missing else []

    def to_detail(self) -> dict:
        detail = {"code": self.code, "message": self.message}
        if self.missing:
            detail["missing"] = self.missing
        return detail


# --- Résolution du scope ---

class IneligibleDesignation(MonitoringError):
    code = "INELIGIBLE_DESIGNATION"


class MissingScopeData(MonitoringError):
    code = "MISSING_SCOPE_DATA"


# --- Émission des clés ---

class UserNotFound(MonitoringError):
    code = "NOT_FOUND"
    http_status = 404


class IncompleteProfile(MonitoringError):
    code = "INCOMPLETE_PROFILE"


class KeyGenerationExhausted(MonitoringError):
    code = "KEY_GENERATION_EXHAUSTED"
    http_status = 503


class InactiveMonitorKey(MonitoringError):
    code = "INACTIVE_MONITOR_KEY"
    http_status = 403


# --- Soumissions / synchronisation ---

class ScopeMismatch(MonitoringError):
    code = "SCOPE_MISMATCH"
    http_status = 403


class NotFoundOrForbidden(MonitoringError):
    code = "NOT_FOUND_OR_FORBIDDEN"
    http_status = 404

    def __init__(self, message: str = "Submission not found or access denied"):
        super().__init__(message)


class InvalidType(MonitoringError):
    code = "INVALID_TYPE"


class BatchTooLarge(MonitoringError):
    code = "BATCH_TOO_LARGE"
    http_status = 413
