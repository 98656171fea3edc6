"""Failure classification tests (what Stripe should retry)"""
import pytest
import redis
import stripe
from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError

from billing_webhooks.core.exceptions import NonRecoverableProcessingError, RecoverableProcessingError
from billing_webhooks.services.failure_classifier import RECOVERABLE_PREFIX, format_error, is_recoverable


@pytest.mark.critical
class TestIsRecoverable:
    """Test recoverable vs non-recoverable classification"""

    @pytest.mark.parametrize("error", [
        OperationalError("SELECT 1", {}, Exception("server closed the connection unexpectedly")),
        PoolTimeoutError("QueuePool limit of size 5 overflow 10 reached"),
        stripe.APIConnectionError("Network error"),
        stripe.RateLimitError("Too many requests"),
        redis.exceptions.ConnectionError("Error 111 connecting to localhost:6379"),
        redis.exceptions.TimeoutError("Timeout reading from socket"),
        ConnectionRefusedError("refused"),
        TimeoutError(),
    ])
    def test_infrastructure_errors_are_recoverable(self, error):
        assert is_recoverable(error) is True

    def test_invalidated_connection_is_recoverable(self):
        error = DBAPIError("UPDATE subscriptions", {}, Exception("terminating connection"), connection_invalidated=True)
        assert is_recoverable(error) is True

    @pytest.mark.parametrize("message", [
        "connection timeout",
        "ECONNRESET while talking to the database",
        "deadlock detected",
        "Lock wait timeout exceeded",
        "Rate limit hit",
    ])
    def test_untyped_errors_classified_by_message(self, message):
        assert is_recoverable(Exception(message)) is True

    @pytest.mark.parametrize("error", [
        ValueError("invalid plan configuration"),
        KeyError("items"),
        IntegrityError("INSERT INTO payments", {}, Exception("NOT NULL constraint failed: payments.amount")),
        stripe.InvalidRequestError("No such price: 'price_x'", "price"),
    ])
    def test_data_and_logic_errors_are_not_recoverable(self, error):
        assert is_recoverable(error) is False

    def test_tagged_errors_win_over_message(self):
        assert is_recoverable(RecoverableProcessingError("ledger conflict")) is True
        assert is_recoverable(NonRecoverableProcessingError("connection field missing")) is False


@pytest.mark.high
class TestFormatError:
    """Test ledger error text"""

    def test_recoverable_errors_are_prefixed(self):
        assert format_error(Exception("connection timeout"), True) == f"{RECOVERABLE_PREFIX}connection timeout"

    def test_non_recoverable_errors_are_plain(self):
        assert format_error(ValueError("invalid plan configuration"), False) == "invalid plan configuration"

    def test_empty_message_uses_exception_name(self):
        assert format_error(TimeoutError(), True) == f"{RECOVERABLE_PREFIX}TimeoutError"
