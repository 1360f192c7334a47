# tenant_guard/tasks/maintenance_tasks.py
import logging
from datetime import timedelta
from typing import Dict, Iterable

from tenant_guard.core.logging_config import configure_logging
from tenant_guard.schemas.security import SecurityMetrics, TimeRange
from tenant_guard.services.engine import TenantSecurityEngine, build_engine

logger = logging.getLogger(__name__)


def cleanup_rate_limit_entries(engine: TenantSecurityEngine = None) -> int:
    """
    Tâche périodique : purge des compteurs non mis à jour depuis la rétention
    (RATE_LIMIT_RETENTION_HOURS)
    """
    engine = engine or build_engine()
    deleted = engine.rate_limiter.cleanup_expired_entries()
    logger.info(f"Nettoyage des compteurs terminé: {deleted} ligne(s)")
    return deleted


def report_security_metrics(
    institution_ids: Iterable[str],
    engine: TenantSecurityEngine = None,
    hours: int = 24,
) -> Dict[str, SecurityMetrics]:
    """
    Tâche périodique : métriques de sécurité par institution sur les
    dernières `hours` heures. Une institution en échec n'arrête pas les autres.
    """
    engine = engine or build_engine()
    end = engine.rate_limiter.clock()
    time_range = TimeRange(start=end - timedelta(hours=hours), end=end)

    reports = {}
    for institution_id in institution_ids:
        try:
            metrics = engine.analyzer.get_security_metrics(institution_id, time_range)
        except Exception as e:
            logger.error(f"Analyse impossible pour {institution_id}: {e}")
            continue

        reports[institution_id] = metrics
        if metrics.recommendations:
            logger.warning(
                f"Institution {institution_id}: risque {metrics.risk_score}%, "
                f"{len(metrics.top_risky_users)} utilisateur(s) à surveiller - "
                f"{'; '.join(metrics.recommendations)}"
            )
        else:
            logger.info(f"Institution {institution_id}: risque {metrics.risk_score}%")
    return reports


if __name__ == "__main__":
    configure_logging()
    cleanup_rate_limit_entries()
