# Importe tous les modèles pour enregistrer leurs tables dans Base.metadata
# avant que SQLAlchemy tente de résoudre les clés étrangères inter-modèles.
# users doit être chargé avant monitor_submissions (FK user_id → users.id).

from pollwatch.models.user import User  # noqa: F401  (doit précéder submission)
from pollwatch.models.submission import MonitorSubmission, MonitorSubmissionToken  # noqa: F401
