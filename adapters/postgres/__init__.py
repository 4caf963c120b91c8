from .store import (
    PostgresAlertDataSource,
    PostgresIncidentStore,
    PostgresTagSource,
    incident_from_row,
)

__all__ = [
    "PostgresAlertDataSource",
    "PostgresIncidentStore",
    "PostgresTagSource",
    "incident_from_row",
]
