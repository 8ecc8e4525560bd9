"""Wiring of the store and services from configuration."""

from dataclasses import dataclass
from typing import Any

from ..classification.audit import AuditSink
from ..classification.gate import ClassificationGate
from ..storage import GraphStoreBase, get_graph_store
from .analytics import AnalyticsService
from .links import LinkService


@dataclass
class Services:
    store: GraphStoreBase
    audit: AuditSink
    gate: ClassificationGate
    links: LinkService
    analytics: AnalyticsService

    def close(self) -> None:
        self.audit.close(wait=True)


def build_services(config: dict[str, Any], store: GraphStoreBase | None = None) -> Services:
    store = store or get_graph_store(config)
    audit = AuditSink(store, workers=config.get("audit", {}).get("workers", 2))
    return Services(
        store=store,
        audit=audit,
        gate=ClassificationGate(store, audit),
        links=LinkService.from_config(store, config),
        analytics=AnalyticsService.from_config(store, config),
    )
