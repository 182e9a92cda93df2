"""Registry, reconciliation, ownership guard and transfer orchestration."""
