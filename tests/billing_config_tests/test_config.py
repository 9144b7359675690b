"""Tests for billing_config: defaults, overlays, validation and bridges."""

from pathlib import Path

import pytest
import yaml

from billing_config import DEFAULTS_FILE, get_active_config
from billing_config.bridges import (
    build_email_subjects,
    build_runner_settings,
    trigger_secret,
)
from billing_config.loader import merge_settings, parse_config
from billing_config.schema import BillingConfig
from billing_recurring.domain.types import ManualRunDedupe


def _write(tmp_path: Path, data: dict) -> Path:
    path = tmp_path / "billing.yaml"
    path.write_text(yaml.safe_dump(data))
    return path


class TestDefaults:
    def test_shipped_defaults(self):
        config = get_active_config()
        assert config.default_payment_terms_days == 30
        assert config.default_currency == "EUR"
        assert config.manual_run_dedupe == "independent"
        assert config.scheduler.trigger_secret_env == "CRON_SECRET"
        assert config.transactions.max_attempts == 3
        assert config.source_files == (str(DEFAULTS_FILE),)

    def test_shipped_file_matches_schema_defaults(self):
        parsed = parse_config(yaml.safe_load(DEFAULTS_FILE.read_text()))
        assert parsed == BillingConfig()

    def test_load_is_logged(self, captured_logs):
        get_active_config()
        loaded = [r for r in captured_logs() if r["message"] == "billing_config_loaded"]
        assert loaded[0]["manual_run_dedupe"] == "independent"


class TestOverlay:
    def test_scalars_replace(self, tmp_path):
        config = get_active_config(
            _write(tmp_path, {"default_payment_terms_days": 60, "manual_run_dedupe": "period"})
        )
        assert config.default_payment_terms_days == 60
        assert config.manual_run_dedupe == "period"
        assert len(config.source_files) == 2

    def test_sections_merge_key_by_key(self, tmp_path):
        config = get_active_config(_write(tmp_path, {"email": {"invoice_subject": "Invoice {number}"}}))
        assert config.email.invoice_subject == "Invoice {number}"
        assert config.email.quote_subject == "Presupuesto {number} - {tenant}"

    def test_merge_settings_does_not_mutate(self):
        base = {"scheduler": {"tick_interval_seconds": 60}}
        merge_settings(base, {"scheduler": {"trigger_secret_env": "X"}})
        assert base == {"scheduler": {"tick_interval_seconds": 60}}

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            get_active_config(tmp_path / "absent.yaml")

    def test_non_mapping_file(self, tmp_path):
        path = tmp_path / "list.yaml"
        path.write_text("- a\n- b\n")
        with pytest.raises(ValueError):
            get_active_config(path)


class TestValidation:
    @pytest.mark.parametrize(
        "overlay",
        [
            {"unknown_key": 1},
            {"manual_run_dedupe": "sometimes"},
            {"default_payment_terms_days": 0},
            {"default_payment_terms_days": "30"},
            {"default_payment_terms_days": True},
            {"default_currency": "euro"},
            {"transactions": {"max_attempts": 0}},
            {"scheduler": {"tick_interval_seconds": -5}},
            {"scheduler": {"trigger_secret_env": ""}},
        ],
    )
    def test_rejected(self, overlay):
        with pytest.raises(ValueError):
            parse_config(overlay)

    def test_empty_mapping_gives_defaults(self):
        assert parse_config({}) == BillingConfig()


class TestBridges:
    def test_runner_settings(self):
        config = parse_config({"manual_run_dedupe": "period", "default_payment_terms_days": 45})
        settings = build_runner_settings(config)
        assert settings.manual_run_dedupe is ManualRunDedupe.PERIOD
        assert settings.default_payment_terms_days == 45
        assert settings.max_attempts == 3

    def test_email_subjects(self):
        config = parse_config({"email": {"credit_note_subject": "Abono {number}"}})
        assert build_email_subjects(config).credit_note == "Abono {number}"

    def test_trigger_secret_from_environment(self):
        config = BillingConfig()
        assert trigger_secret(config, {"CRON_SECRET": "s3cret"}) == "s3cret"

    def test_unset_or_empty_secret_is_none(self):
        config = parse_config({"scheduler": {"trigger_secret_env": "BILLING_TRIGGER"}})
        assert trigger_secret(config, {}) is None
        assert trigger_secret(config, {"BILLING_TRIGGER": ""}) is None
