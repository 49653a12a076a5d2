"""Tests for configuration loading and validation."""

from dataclasses import replace

import pytest

from cancellation_engine.config import (
    AppConfig,
    BusinessConfig,
    GatewayConfig,
    PolicyDefaultsConfig,
    WaitlistConfig,
    _validate_config,
)


class TestConfigValidation:
    def test_default_config_passes_validation(self):
        config = AppConfig()
        _validate_config(config)  # should not raise

    def test_unknown_timezone(self):
        config = replace(AppConfig(), business=BusinessConfig(timezone="Mars/Olympus_Mons"))
        with pytest.raises(ValueError, match="SALON_TZ"):
            _validate_config(config)

    def test_no_refund_larger_than_free_window(self):
        defaults = PolicyDefaultsConfig.__new__(PolicyDefaultsConfig)
        object.__setattr__(defaults, "free_cancel_hours", 2.0)
        object.__setattr__(defaults, "no_refund_hours", 24.0)
        object.__setattr__(defaults, "partial_refund_percent", 50.0)
        object.__setattr__(defaults, "grace_minutes", 15)
        object.__setattr__(defaults, "reschedule_allowed_hours", 2.0)
        object.__setattr__(defaults, "applies_to", "deposit_only")

        config = AppConfig.__new__(AppConfig)
        object.__setattr__(config, "business", BusinessConfig())
        object.__setattr__(config, "policy_defaults", defaults)
        object.__setattr__(config, "waitlist", WaitlistConfig())
        object.__setattr__(config, "gateway", GatewayConfig())
        object.__setattr__(config, "log_level", "INFO")
        object.__setattr__(config, "service_name", "test")

        with pytest.raises(ValueError, match="DEFAULT_NO_REFUND_HOURS"):
            _validate_config(config)

    def test_partial_percent_above_100(self):
        defaults = replace(PolicyDefaultsConfig(), partial_refund_percent=120.0)
        with pytest.raises(ValueError, match="DEFAULT_PARTIAL_REFUND_PERCENT"):
            _validate_config(replace(AppConfig(), policy_defaults=defaults))

    def test_negative_grace(self):
        defaults = replace(PolicyDefaultsConfig(), grace_minutes=-1)
        with pytest.raises(ValueError, match="DEFAULT_GRACE_MINUTES"):
            _validate_config(replace(AppConfig(), policy_defaults=defaults))

    def test_candidate_limit_must_be_positive(self):
        waitlist = replace(WaitlistConfig(), candidate_limit=0)
        with pytest.raises(ValueError, match="WAITLIST_CANDIDATE_LIMIT"):
            _validate_config(replace(AppConfig(), waitlist=waitlist))

    def test_negative_unpaid_hold(self):
        waitlist = replace(WaitlistConfig(), unpaid_hold_minutes=-3)
        with pytest.raises(ValueError, match="UNPAID_HOLD_MINUTES"):
            _validate_config(replace(AppConfig(), waitlist=waitlist))

    def test_stripe_timeout_must_be_positive(self):
        gateway = replace(GatewayConfig(), timeout_seconds=0.0)
        with pytest.raises(ValueError, match="STRIPE_TIMEOUT_SECONDS"):
            _validate_config(replace(AppConfig(), gateway=gateway))

    def test_negative_retries(self):
        gateway = replace(GatewayConfig(), max_network_retries=-1)
        with pytest.raises(ValueError, match="STRIPE_MAX_NETWORK_RETRIES"):
            _validate_config(replace(AppConfig(), gateway=gateway))

    def test_negative_settle_timeout(self):
        gateway = replace(GatewayConfig(), settle_timeout_seconds=-0.5)
        with pytest.raises(ValueError, match="CANCEL_SETTLE_TIMEOUT_SECONDS"):
            _validate_config(replace(AppConfig(), gateway=gateway))


class TestEnvParsing:
    def test_safe_int_parsing(self):
        from cancellation_engine.config import _safe_int

        assert _safe_int("NONEXISTENT_VAR_12345", "42") == 42

    def test_safe_float_parsing(self):
        from cancellation_engine.config import _safe_float

        assert _safe_float("NONEXISTENT_VAR_12345", "3.14") == pytest.approx(3.14)

    def test_safe_int_rejects_garbage(self, monkeypatch):
        from cancellation_engine.config import _safe_int

        monkeypatch.setenv("CANCEL_TEST_INT", "twenty")
        with pytest.raises(ValueError, match="CANCEL_TEST_INT"):
            _safe_int("CANCEL_TEST_INT", "1")

    @pytest.mark.parametrize("raw,expected", [
        ("true", True), ("1", True), ("YES", True), ("off", False), ("0", False),
    ])
    def test_safe_bool(self, monkeypatch, raw, expected):
        from cancellation_engine.config import _safe_bool

        monkeypatch.setenv("CANCEL_TEST_BOOL", raw)
        assert _safe_bool("CANCEL_TEST_BOOL", "false") is expected

    def test_safe_bool_rejects_garbage(self, monkeypatch):
        from cancellation_engine.config import _safe_bool

        monkeypatch.setenv("CANCEL_TEST_BOOL", "maybe")
        with pytest.raises(ValueError, match="CANCEL_TEST_BOOL"):
            _safe_bool("CANCEL_TEST_BOOL", "false")
