"""Session-bound services. Services flush; callers own commit/rollback."""
