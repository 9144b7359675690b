"""
billing_config -- single public entrypoint for runtime settings.

Responsibility:
    Provides the ONLY way to obtain settings at runtime through
    ``get_active_config()``.  Returns a frozen ``BillingConfig``.

Architecture position:
    Configuration.  Sits above ``billing_kernel`` and ``billing_recurring``;
    neither of them imports this package.  ``billing_config.bridges``
    translates settings into their constructor inputs.

Invariants enforced:
    - Single entrypoint: all runtime settings flow through get_active_config().
    - The shipped ``defaults.yaml`` is always loaded first; an optional
      deployment file overlays it.
    - Invalid values fail at load time with ValueError.

Failure modes:
    - ``FileNotFoundError`` -- the overlay file does not exist.
    - ``ValueError`` -- unknown keys or invalid values.

Audit relevance:
    Every successful call emits a ``billing_config_loaded`` log entry
    naming the source files and the dedupe scope in force.
"""

from __future__ import annotations

import logging
from pathlib import Path

from billing_config.loader import load_yaml_file, merge_settings, parse_config
from billing_config.schema import BillingConfig

_logger = logging.getLogger("billing_kernel.config")

DEFAULTS_FILE = Path(__file__).parent / "defaults.yaml"


def get_active_config(path: Path | str | None = None) -> BillingConfig:
    """The ONLY public configuration entrypoint.

    Args:
        path: Optional YAML file overlaying the shipped defaults.

    Returns:
        BillingConfig -- frozen, validated settings.

    Raises:
        FileNotFoundError: If ``path`` does not exist.
        yaml.YAMLError: If a file is not valid YAML.
        ValueError: If validation fails.
    """
    data = load_yaml_file(DEFAULTS_FILE)
    sources = [str(DEFAULTS_FILE)]
    if path is not None:
        data = merge_settings(data, load_yaml_file(Path(path)))
        sources.append(str(path))

    config = parse_config(data, source_files=tuple(sources))

    _logger.info(
        "billing_config_loaded",
        extra={
            "source_files": list(config.source_files),
            "manual_run_dedupe": config.manual_run_dedupe,
            "default_payment_terms_days": config.default_payment_terms_days,
            "default_currency": config.default_currency,
        },
    )
    return config


__all__ = ["BillingConfig", "get_active_config"]
