from .store import InMemoryAlertDataSource, InMemoryIncidentStore, InMemoryTagSource

__all__ = ["InMemoryAlertDataSource", "InMemoryIncidentStore", "InMemoryTagSource"]
