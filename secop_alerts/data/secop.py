"""
SECOP II open-data client.

Queries the datos.gov.co Socrata endpoint with SoQL filters and normalizes
the JSON array into ProcurementItem records.
"""

import logging
import re
from typing import Any, Optional

import requests

from secop_alerts.config import SecopConfig
from secop_alerts.database.models import AlertFilters, ProcurementItem

logger = logging.getLogger(__name__)


class UpstreamUnavailable(Exception):
    """Raised when the open-data API cannot be reached or answers with an error."""

    pass


class SecopClient:
    """Fetches procurement processes from the SECOP II open-data API."""

    DEFAULT_URL = "https://www.datos.gov.co/resource/p6dx-8zbt.json"
    ORDER_BY = "fecha_de_publicacion_del DESC"
    ID_FIELD = "id_del_proceso"

    # Fields searched by the free-text keyword
    KEYWORD_FIELDS = (
        "nombre_del_procedimiento",
        "descripci_n_del_procedimiento",
        "entidad",
    )

    def __init__(
        self,
        base_url: str = DEFAULT_URL,
        app_token: Optional[str] = None,
        timeout: float = 10.0,
        default_limit: int = 20,
        max_limit: int = 100,
    ):
        """
        Initialize SECOP client.

        Args:
            base_url: Dataset resource URL
            app_token: Optional Socrata app token, raises the rate limit
            timeout: Seconds before a request counts as unavailable
            default_limit: Page size when the caller passes none
            max_limit: Larger limits are clamped to this value
        """
        self.base_url = base_url
        self.app_token = app_token
        self.timeout = timeout
        self.default_limit = default_limit
        self.max_limit = max_limit

    @classmethod
    def from_config(cls, config: SecopConfig) -> "SecopClient":
        """Build a client from the `secop` config section."""
        return cls(
            base_url=config.base_url,
            app_token=config.app_token,
            timeout=config.timeout_seconds,
            default_limit=config.default_limit,
            max_limit=config.max_limit,
        )

    def query(
        self, filters: AlertFilters, limit: Optional[int] = None
    ) -> list[ProcurementItem]:
        """
        Fetch processes matching all given filters, newest first.

        Args:
            filters: Conjunctive filters; unset fields impose no constraint
            limit: Maximum number of results, clamped to [1, max_limit]

        Returns:
            ProcurementItem list ordered by publication date descending

        Raises:
            UpstreamUnavailable: On timeout, connection error, non-2xx status
                or a body that is not a JSON array
        """
        params = self.build_params(filters, limit)
        records = self._fetch(params)
        return self._normalize(records)

    def recent(self, limit: Optional[int] = None) -> list[ProcurementItem]:
        """Fetch the most recently published processes."""
        return self.query(AlertFilters(), limit)

    def get_process(self, process_id: str) -> Optional[ProcurementItem]:
        """Fetch a single process by its id."""
        params = {
            "$where": f"{self.ID_FIELD}='{_escape(process_id)}'",
            "$limit": "1",
        }
        items = self._normalize(self._fetch(params))
        return items[0] if items else None

    def clamp_limit(self, limit: Optional[int]) -> int:
        """Clamp a requested page size into the allowed range."""
        if limit is None:
            limit = self.default_limit
        return max(1, min(int(limit), self.max_limit))

    def build_params(
        self, filters: AlertFilters, limit: Optional[int] = None
    ) -> dict[str, str]:
        """Build SoQL query parameters for the given filters."""
        conditions = ["fecha_de_publicacion_del IS NOT NULL"]

        if filters.keyword:
            keyword = _upper_literal(filters.keyword)
            clauses = " OR ".join(
                f"upper({name}) LIKE '%{keyword}%'" for name in self.KEYWORD_FIELDS
            )
            conditions.append(f"({clauses})")

        if filters.departamento:
            value = _upper_literal(_clean_location(filters.departamento))
            conditions.append(f"upper(departamento_entidad) LIKE '%{value}%'")

        if filters.municipio:
            value = _upper_literal(_clean_location(filters.municipio))
            conditions.append(f"upper(ciudad_entidad) LIKE '%{value}%'")

        if filters.modalidad:
            value = _upper_literal(filters.modalidad)
            conditions.append(f"upper(modalidad_de_contratacion) LIKE '%{value}%'")

        if filters.fase:
            # Phase may live in either column depending on the process
            value = _upper_literal(filters.fase)
            conditions.append(
                f"(upper(fase) LIKE '%{value}%' "
                f"OR upper(estado_del_procedimiento) LIKE '%{value}%')"
            )

        if filters.tipo_contrato:
            conditions.append(f"tipo_de_contrato='{_escape(filters.tipo_contrato)}'")

        return {
            "$where": " AND ".join(conditions),
            "$limit": str(self.clamp_limit(limit)),
            "$order": self.ORDER_BY,
        }

    def _headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.app_token:
            headers["X-App-Token"] = self.app_token
        return headers

    def _fetch(self, params: dict[str, str]) -> list[Any]:
        """Run the HTTP request, mapping every failure to UpstreamUnavailable."""
        logger.debug(f"SECOP query: {params}")
        try:
            response = requests.get(
                self.base_url,
                params=params,
                headers=self._headers(),
                timeout=self.timeout,
            )
            response.raise_for_status()
            data = response.json()
        except requests.Timeout as e:
            raise UpstreamUnavailable(
                f"SECOP request timed out after {self.timeout}s"
            ) from e
        except requests.RequestException as e:
            raise UpstreamUnavailable(f"SECOP request failed: {e}") from e
        except ValueError as e:
            raise UpstreamUnavailable(f"SECOP returned invalid JSON: {e}") from e

        if not isinstance(data, list):
            raise UpstreamUnavailable(
                f"SECOP returned {type(data).__name__}, expected a list"
            )

        logger.debug(f"SECOP returned {len(data)} records")
        return data

    def _normalize(self, records: list[Any]) -> list[ProcurementItem]:
        items = []
        for record in records:
            if not isinstance(record, dict):
                continue
            process_id = record.get(self.ID_FIELD)
            if not process_id:
                continue
            items.append(ProcurementItem(id=str(process_id), record=record))
        return items


def _escape(value: str) -> str:
    """Escape a value for a single-quoted SoQL literal."""
    return value.replace("'", "''")


def _upper_literal(value: str) -> str:
    return _escape(value.strip().upper())


def _clean_location(value: str) -> str:
    """Normalize names like "Bogotá, D.C." to "Bogotá"."""
    value = re.sub(r",?\s*D\.?C\.?", "", value, flags=re.IGNORECASE)
    value = value.replace(",", "")
    return re.sub(r"\s+", " ", value).strip()
