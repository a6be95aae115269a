"""
Data models for the SECOP alerts service.
"""

from dataclasses import dataclass, field, asdict
from datetime import datetime
from typing import Optional, Any

# Hours between automatic checks a user can pick for an alert
ALLOWED_FREQUENCY_HOURS = (1, 3, 6, 12, 24)
DEFAULT_FREQUENCY_HOURS = 6


@dataclass
class AlertFilters:
    """Saved search filters. ``None`` means no constraint on that field."""

    keyword: Optional[str] = None
    departamento: Optional[str] = None
    municipio: Optional[str] = None
    modalidad: Optional[str] = None
    tipo_contrato: Optional[str] = None
    fase: Optional[str] = None

    def __post_init__(self):
        # Blank values behave exactly like absent ones
        for name, value in asdict(self).items():
            if isinstance(value, str) and not value.strip():
                setattr(self, name, None)
            elif isinstance(value, str):
                setattr(self, name, value.strip())

    def to_dict(self) -> dict[str, str]:
        """Serialize only the filters that are set."""
        return {k: v for k, v in asdict(self).items() if v is not None}

    @classmethod
    def from_dict(cls, data: Optional[dict[str, Any]]) -> "AlertFilters":
        """Build filters from a stored dict, ignoring unknown keys."""
        data = data or {}
        known = cls.__dataclass_fields__.keys()
        return cls(**{k: v for k, v in data.items() if k in known})

    def describe(self) -> str:
        """Human readable summary of the filters."""
        parts = []
        if self.keyword:
            parts.append(f'"{self.keyword}"')
        for value in (
            self.departamento,
            self.municipio,
            self.tipo_contrato,
            self.modalidad,
            self.fase,
        ):
            if value:
                parts.append(value)
        return " • ".join(parts) if parts else "Todos los procesos"


@dataclass
class User:
    """User with notification routing settings."""

    id: str
    email: Optional[str] = None
    push_token: Optional[str] = None
    discord_webhook_url: Optional[str] = None
    created_at: Optional[datetime] = None


@dataclass
class AlertDefinition:
    """A saved search evaluated periodically for new procurement processes."""

    user_id: str
    name: str
    filters: AlertFilters = field(default_factory=AlertFilters)
    frequency_hours: int = DEFAULT_FREQUENCY_HOURS
    is_active: bool = True
    last_check: Optional[datetime] = None
    last_results_count: int = 0
    last_results_ids: list[str] = field(default_factory=list)
    id: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass
class AlertHistory:
    """Record of an evaluation cycle that found new processes."""

    alert_id: str
    user_id: str
    new_processes_count: int
    new_processes_ids: list[str]
    notification_sent: bool = False
    id: Optional[int] = None
    created_at: Optional[datetime] = None


@dataclass
class ProcurementItem:
    """A SECOP II process as returned by the open-data API."""

    id: str
    record: dict[str, Any] = field(default_factory=dict)

    @property
    def name(self) -> str:
        return (
            self.record.get("nombre_del_procedimiento")
            or self.record.get("entidad")
            or self.id
        )

    @property
    def entity(self) -> Optional[str]:
        return self.record.get("entidad")

    @property
    def phase(self) -> Optional[str]:
        return self.record.get("fase")

    @property
    def published_at(self) -> Optional[str]:
        return self.record.get("fecha_de_publicacion_del")


def validate_frequency(frequency_hours: int) -> int:
    """
    Validate an alert frequency.

    Raises:
        ValueError: If the frequency is not one of ALLOWED_FREQUENCY_HOURS
    """
    if frequency_hours not in ALLOWED_FREQUENCY_HOURS:
        allowed = ", ".join(str(h) for h in ALLOWED_FREQUENCY_HOURS)
        raise ValueError(
            f"Invalid frequency {frequency_hours}h, expected one of: {allowed}"
        )
    return frequency_hours


def unique_ids(ids: list[str]) -> list[str]:
    """Drop duplicate and empty ids, keeping first occurrence order."""
    seen: set[str] = set()
    result = []
    for item_id in ids:
        if item_id and item_id not in seen:
            seen.add(item_id)
            result.append(item_id)
    return result
