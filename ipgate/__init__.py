"""IP admission-control filter backed by a shared state store."""
