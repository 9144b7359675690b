"""
Configuration Loader (``billing_config.loader``).

Responsibility
--------------
Loads YAML files and parses the merged mapping into the frozen
``billing_config.schema`` dataclasses.  The single public entry point for
runtime config is ``billing_config.get_active_config()``.

Invariants enforced
-------------------
* Every parsed object is a frozen dataclass from ``schema.py``.
* Unknown ``manual_run_dedupe`` values, non-positive payment terms,
  invalid currencies and non-positive intervals/attempts raise
  ``ValueError``; there are no silent fallbacks for bad values.
* Unknown top-level keys raise ``ValueError`` (typos never pass silently).

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Invalid values  -> ``ValueError``.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml

from billing_config.schema import (
    MANUAL_RUN_DEDUPE_CHOICES,
    BillingConfig,
    EmailSettings,
    SchedulerSettings,
    TransactionSettings,
)
from billing_kernel.db.types import validate_currency
from billing_kernel.exceptions import InvalidCurrencyError

_SECTIONS = ("scheduler", "transactions", "email")
_TOP_LEVEL_KEYS = frozenset(
    {
        "database_url",
        "default_payment_terms_days",
        "default_currency",
        "manual_run_dedupe",
        *_SECTIONS,
    }
)


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
        ValueError: if the document is not a mapping.
    """
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: expected a mapping at the top level")
    return data


def merge_settings(base: dict[str, Any], overlay: dict[str, Any]) -> dict[str, Any]:
    """Overlay one level deep: sections merge key by key, scalars replace."""
    merged = dict(base)
    for key, value in overlay.items():
        if key in _SECTIONS and isinstance(value, dict):
            merged[key] = {**(base.get(key) or {}), **value}
        else:
            merged[key] = value
    return merged


def _positive_int(data: dict[str, Any], key: str) -> int:
    value = data[key]
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{key} must be an integer, got {value!r}")
    if value <= 0:
        raise ValueError(f"{key} must be positive, got {value}")
    return value


def parse_scheduler(data: dict[str, Any]) -> SchedulerSettings:
    interval = data.get("tick_interval_seconds", SchedulerSettings.tick_interval_seconds)
    if isinstance(interval, bool) or not isinstance(interval, (int, float)) or interval <= 0:
        raise ValueError(f"scheduler.tick_interval_seconds must be positive, got {interval!r}")
    secret_env = data.get("trigger_secret_env", SchedulerSettings.trigger_secret_env)
    if not secret_env or not isinstance(secret_env, str):
        raise ValueError("scheduler.trigger_secret_env must be a variable name")
    return SchedulerSettings(
        tick_interval_seconds=float(interval),
        trigger_secret_env=secret_env,
    )


def parse_email(data: dict[str, Any]) -> EmailSettings:
    defaults = EmailSettings()
    return EmailSettings(
        invoice_subject=str(data.get("invoice_subject", defaults.invoice_subject)),
        quote_subject=str(data.get("quote_subject", defaults.quote_subject)),
        credit_note_subject=str(
            data.get("credit_note_subject", defaults.credit_note_subject)
        ),
    )


def parse_config(data: dict[str, Any], source_files: tuple[str, ...] = ()) -> BillingConfig:
    """
    Build a BillingConfig from a merged settings mapping.

    Raises:
        ValueError: on unknown keys or invalid values.
    """
    unknown = set(data) - _TOP_LEVEL_KEYS
    if unknown:
        raise ValueError(f"Unknown configuration keys: {sorted(unknown)}")

    defaults = BillingConfig()
    values = {
        "default_payment_terms_days": defaults.default_payment_terms_days,
        "default_currency": defaults.default_currency,
        "manual_run_dedupe": defaults.manual_run_dedupe,
        "database_url": defaults.database_url,
        **data,
    }

    terms = _positive_int(values, "default_payment_terms_days")

    try:
        currency = validate_currency(values["default_currency"])
    except InvalidCurrencyError as exc:
        raise ValueError(str(exc)) from exc

    dedupe = values["manual_run_dedupe"]
    if dedupe not in MANUAL_RUN_DEDUPE_CHOICES:
        raise ValueError(
            f"manual_run_dedupe must be one of {MANUAL_RUN_DEDUPE_CHOICES}, got {dedupe!r}"
        )

    transactions = values.get("transactions") or {}
    max_attempts = _positive_int(
        {"max_attempts": transactions.get("max_attempts", TransactionSettings.max_attempts)},
        "max_attempts",
    )

    return BillingConfig(
        database_url=str(values["database_url"]),
        default_payment_terms_days=terms,
        default_currency=currency,
        manual_run_dedupe=dedupe,
        scheduler=parse_scheduler(values.get("scheduler") or {}),
        transactions=TransactionSettings(max_attempts=max_attempts),
        email=parse_email(values.get("email") or {}),
        source_files=source_files,
    )
