"""Recurring template management, the per-template runner and the scheduler."""
