"""Organization-scoped authorization engine."""
