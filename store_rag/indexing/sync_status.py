"""
Synchronization status of a store's knowledge, for merchant-facing UIs.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from store_rag.config.settings import settings
from store_rag.errors import VectorStoreError
from store_rag.ingestion.records import utc_now
from store_rag.integrations import SyncBookkeeping
from store_rag.utils.logger import get_logger
from store_rag.vector.base_store import BaseVectorStore

logger = get_logger(__name__)


class SyncStatus(str, Enum):
    SYNCING = "syncing"
    SYNCED = "synced"
    NEEDS_SYNC = "needs_sync"
    NEVER_SYNCED = "never_synced"
    ERROR = "error"


STATUS_MESSAGES = {
    SyncStatus.SYNCING: "Sincronización en progreso...",
    SyncStatus.SYNCED: "Datos sincronizados correctamente",
    SyncStatus.NEEDS_SYNC: "Los datos pueden estar desactualizados",
    SyncStatus.NEVER_SYNCED: "La sincronización inicial no se ha completado",
    SyncStatus.ERROR: "La última sincronización falló",
}


@dataclass
class SyncStatusReport:
    store_id: str
    sync_status: SyncStatus
    status_message: str
    can_trigger_sync: bool
    has_data: bool
    last_sync_at: Optional[datetime]
    created_at: datetime
    minutes_since_creation: int
    minutes_since_last_sync: Optional[int] = None
    estimated_minutes_remaining: Optional[int] = None
    vector_counts: Dict[str, int] = field(default_factory=dict)
    last_error: Optional[str] = None
    recommendations: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'store_id': self.store_id,
            'sync_status': self.sync_status.value,
            'status_message': self.status_message,
            'can_trigger_sync': self.can_trigger_sync,
            'has_data': self.has_data,
            'last_sync_at': self.last_sync_at.isoformat() if self.last_sync_at else None,
            'created_at': self.created_at.isoformat(),
            'minutes_since_creation': self.minutes_since_creation,
            'minutes_since_last_sync': self.minutes_since_last_sync,
            'estimated_minutes_remaining': self.estimated_minutes_remaining,
            'vector_counts': dict(self.vector_counts),
            'last_error': self.last_error,
            'recommendations': list(self.recommendations),
        }


def _minutes_between(earlier: datetime, later: datetime) -> int:
    return max(0, int((later - earlier).total_seconds() // 60))


def build_recommendations(status: SyncStatus, has_data: bool, minutes_since_creation: int) -> List[str]:
    """Next steps to show the merchant for a given status."""
    if status in (SyncStatus.NEVER_SYNCED, SyncStatus.ERROR):
        recommendations = [
            "Ejecuta una sincronización manual desde Configuración",
            "Verifica que tu tienda tenga productos publicados",
        ]
        if minutes_since_creation > 10:
            recommendations.append("Si el problema persiste, contacta soporte técnico")
        return recommendations

    if status is SyncStatus.SYNCING:
        return [
            "Espera unos minutos para que termine la sincronización",
            "Puedes continuar configurando otras funcionalidades",
        ]

    if status is SyncStatus.NEEDS_SYNC:
        return [
            "Ejecuta una sincronización para obtener datos actualizados",
            "Configura sincronización automática diaria",
        ]

    if not has_data:
        return [
            "Los datos están sincronizados pero no se encontraron productos",
            "Verifica que tienes productos publicados en Tienda Nube",
        ]
    return [
        "¡Todo está listo! Puedes hacer consultas a los agentes",
        'Prueba preguntar: "¿qué productos tengo?" o "analiza mi catálogo"',
    ]


class SyncStatusService:
    """
    Derives a store's sync status from bookkeeping, job state and the vector
    store.

    ``job_lookup`` returns the most recent job for a store (or None); the job
    manager's ``last_job_for`` fits.
    """

    def __init__(self,
                 bookkeeping: SyncBookkeeping,
                 vector_store: BaseVectorStore,
                 job_lookup: Optional[Callable[[str], Any]] = None,
                 grace_minutes: Optional[int] = None,
                 stale_minutes: Optional[int] = None,
                 clock: Callable[[], datetime] = utc_now):
        self.bookkeeping = bookkeeping
        self.vector_store = vector_store
        self.job_lookup = job_lookup
        self.grace_minutes = settings.initial_sync_grace_minutes if grace_minutes is None else grace_minutes
        self.stale_minutes = settings.stale_sync_minutes if stale_minutes is None else stale_minutes
        self._clock = clock

    async def get_sync_status(self, store_id: str) -> SyncStatusReport:
        """Raises KeyError when the store is unknown to bookkeeping."""
        record = await self.bookkeeping.get_store_record(store_id)
        if record is None:
            raise KeyError(store_id)

        now = self._clock()
        since_creation = _minutes_between(record.created_at, now)
        since_sync = _minutes_between(record.last_sync_at, now) if record.last_sync_at else None

        last_job = self.job_lookup(store_id) if self.job_lookup else None
        last_error = None
        estimated = None
        can_trigger = True

        if last_job is not None and last_job.is_active:
            status = SyncStatus.SYNCING
            can_trigger = False
        elif last_job is not None and last_job.result is not None and not last_job.result.success:
            status = SyncStatus.ERROR
            last_error = last_job.result.error
        elif record.last_sync_at is None:
            if since_creation < self.grace_minutes:
                status = SyncStatus.SYNCING
                estimated = self.grace_minutes - since_creation
                can_trigger = False
            else:
                status = SyncStatus.NEVER_SYNCED
        elif since_sync > self.stale_minutes:
            status = SyncStatus.NEEDS_SYNC
        else:
            status = SyncStatus.SYNCED

        counts: Dict[str, int] = {}
        try:
            stats = await self.vector_store.namespace_stats(store_id)
            counts = {dt.value: count for dt, count in stats.items()}
        except VectorStoreError as e:
            logger.warning("Could not read namespace stats", store_id=store_id, error=str(e))
        has_data = any(count > 0 for count in counts.values())

        return SyncStatusReport(
            store_id=store_id,
            sync_status=status,
            status_message=STATUS_MESSAGES[status],
            can_trigger_sync=can_trigger,
            has_data=has_data,
            last_sync_at=record.last_sync_at,
            created_at=record.created_at,
            minutes_since_creation=since_creation,
            minutes_since_last_sync=since_sync,
            estimated_minutes_remaining=estimated,
            vector_counts=counts,
            last_error=last_error,
            recommendations=build_recommendations(status, has_data, since_creation),
        )
