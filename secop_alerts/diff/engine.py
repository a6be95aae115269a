"""
Result diffing for saved-search alerts.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Iterable

from secop_alerts.database.models import AlertDefinition, ProcurementItem, unique_ids


@dataclass
class DiffResult:
    """Items that appeared since the previous evaluation."""

    new_items: list[ProcurementItem] = field(default_factory=list)
    new_ids: list[str] = field(default_factory=list)
    fetched_ids: list[str] = field(default_factory=list)

    @property
    def has_new(self) -> bool:
        return bool(self.new_ids)


class DiffEngine:
    """Compares fresh query results against an alert's baseline."""

    def diff(
        self,
        fresh_items: list[ProcurementItem],
        previous_ids: Iterable[str],
    ) -> DiffResult:
        """
        Compute newly appeared items.

        Args:
            fresh_items: Items from the latest query, in upstream order
            previous_ids: Ids recorded as seen on the last evaluation

        Returns:
            DiffResult whose new_items keep the upstream order; an id repeated
            in fresh_items is reported once
        """
        previous = set(previous_ids)
        seen: set[str] = set()
        new_items = []

        for item in fresh_items:
            if item.id in previous or item.id in seen:
                continue
            seen.add(item.id)
            new_items.append(item)

        return DiffResult(
            new_items=new_items,
            new_ids=[item.id for item in new_items],
            fetched_ids=unique_ids([item.id for item in fresh_items]),
        )

    def is_baseline(self, alert: AlertDefinition) -> bool:
        """True on an alert's first evaluation, whose results are never notified."""
        return alert.last_check is None and not alert.last_results_ids

    def is_due(self, alert: AlertDefinition, now: datetime) -> bool:
        """True if the alert was never checked or its frequency has elapsed."""
        if alert.last_check is None:
            return True
        return now - alert.last_check >= timedelta(hours=alert.frequency_hours)
