"""
Tests for environment configuration and structured logging
"""

import io
import json
import logging

from wallet_ledger import config as config_module
from wallet_ledger.config import LedgerConfig, get_config, reload_config
from wallet_ledger.logging_config import JSONFormatter, setup_logging, get_logger, log_action


class TestLedgerConfig:
    """Environment-driven settings"""

    def test_defaults(self):
        config = LedgerConfig()
        assert config.transactions_table == "transactions"
        assert config.enforce_status_transitions is True
        assert config.default_page_size == 10
        assert config.max_page_size == 100

    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("WALLET_LEDGER_DATABASE_URL", "memory://")
        monkeypatch.setenv("WALLET_LEDGER_MAX_PAGE_SIZE", "25")
        monkeypatch.setenv("WALLET_LEDGER_ENFORCE_STATUS_TRANSITIONS", "false")

        config = LedgerConfig()

        assert config.database_url == "memory://"
        assert config.max_page_size == 25
        assert config.enforce_status_transitions is False

    def test_reload_config(self, monkeypatch):
        original = get_config()
        try:
            monkeypatch.setenv("WALLET_LEDGER_LOG_LEVEL", "DEBUG")
            reloaded = reload_config()
            assert reloaded.log_level == "DEBUG"
            assert get_config() is reloaded
        finally:
            config_module.config = original


class TestStructuredLogging:
    """JSON log lines carry the structured action fields"""

    def setup_method(self):
        self.stream = io.StringIO()
        self.logger = logging.getLogger("wallet_ledger.test")
        self.handler = logging.StreamHandler(self.stream)
        self.handler.setFormatter(JSONFormatter())
        self.logger.addHandler(self.handler)
        self.logger.setLevel(logging.DEBUG)
        self.logger.propagate = False

    def teardown_method(self):
        self.logger.removeHandler(self.handler)

    def last_entry(self):
        return json.loads(self.stream.getvalue().strip().splitlines()[-1])

    def test_log_action_fields(self):
        log_action(
            self.logger, "info", "Transaction created: TX001",
            action="create_transaction", resource="transaction:TX001",
            correlation_id="req-1", extra={"amount": "50.00"}
        )

        entry = self.last_entry()
        assert entry["level"] == "INFO"
        assert entry["logger"] == "wallet_ledger.test"
        assert entry["message"] == "Transaction created: TX001"
        assert entry["action"] == "create_transaction"
        assert entry["resource"] == "transaction:TX001"
        assert entry["correlation_id"] == "req-1"
        assert entry["extra"] == {"amount": "50.00"}
        assert "timestamp" in entry

    def test_plain_records_omit_empty_fields(self):
        self.logger.warning("slow storage")

        entry = self.last_entry()
        assert entry["message"] == "slow storage"
        assert "action" not in entry
        assert "extra" not in entry

    def test_disabled_level_is_skipped(self):
        self.logger.setLevel(logging.WARNING)
        log_action(self.logger, "info", "hidden", action="noop")
        assert self.stream.getvalue() == ""

    def test_exception_included(self):
        try:
            raise RuntimeError("boom")
        except RuntimeError:
            self.logger.exception("failed")

        assert "RuntimeError: boom" in self.last_entry()["exception"]

    def test_setup_logging_replaces_handlers(self):
        logger = setup_logging("DEBUG", "text", logger_name="wallet_ledger.setup_test")
        setup_logging("INFO", "json", logger_name="wallet_ledger.setup_test")

        assert len(logger.handlers) == 1
        assert isinstance(logger.handlers[0].formatter, JSONFormatter)
        assert logger.level == logging.INFO
        assert get_logger("wallet_ledger.setup_test") is logger
