"""
Tests for structured lifecycle logging
"""

import json
import logging
from decimal import Decimal

from backoffice.config import BackofficeConfig
from backoffice.logging_config import JSONFormatter, log_action
from backoffice.storage import InMemoryStorage
from backoffice.system import BankingSystem
from backoffice.transactions import TransactionStatus, TransactionType
from backoffice.webhooks import RecordingWebhookNotifier


class TestJSONFormatter:

    def test_lifecycle_fields_in_output(self, caplog):
        logger = logging.getLogger("backoffice.test_formatter")
        with caplog.at_level(logging.INFO, logger="backoffice.test_formatter"):
            log_action(
                logger, "info", "Transaction rejected: T1",
                user_id="U1", action="decide_transaction",
                entity="transaction", entity_id="T1",
                amount=Decimal('-200.00'), status=TransactionStatus.REJECTED,
                details={"refunded": True}
            )

        line = json.loads(JSONFormatter().format(caplog.records[-1]))
        assert line["message"] == "Transaction rejected: T1"
        assert line["level"] == "INFO"
        assert line["entity"] == "transaction"
        assert line["entity_id"] == "T1"
        assert line["amount"] == "-200.00"
        assert line["status"] == "REJECTED"
        assert line["details"] == {"refunded": True}

    def test_absent_fields_omitted(self, caplog):
        logger = logging.getLogger("backoffice.test_formatter")
        with caplog.at_level(logging.WARNING, logger="backoffice.test_formatter"):
            log_action(logger, "warning", "Plain message")

        line = json.loads(JSONFormatter().format(caplog.records[-1]))
        assert set(line) == {"timestamp", "level", "logger", "message"}


class TestLifecycleLogging:

    def test_decision_is_logged_with_outcome(self, caplog):
        system = BankingSystem(
            config=BackofficeConfig(storage_backend="memory"),
            storage=InMemoryStorage(),
            webhooks=RecordingWebhookNotifier()
        )
        user = system.user_manager.create_user(
            name="Alice Martin",
            email="alice@example.com",
            password="secret123",
            balance=Decimal('100.00')
        )
        transaction = system.transaction_engine.create(user.id, "-40", TransactionType.PAYMENT)

        with caplog.at_level(logging.INFO, logger="backoffice"):
            system.transaction_engine.reject(transaction.id, "Duplicate")

        decisions = [r for r in caplog.records if getattr(r, "action", None) == "decide_transaction"]
        assert len(decisions) == 1
        assert decisions[0].entity_id == transaction.id
        assert decisions[0].status == "REJECTED"
        assert decisions[0].user_id == user.id
