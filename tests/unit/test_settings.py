"""
Unit Tests - Configuration
"""
import pytest
from pydantic import ValidationError as PydanticValidationError

from src.analytics.aggregator import MetricsAggregator
from src.bulk.executor import BulkExecutor
from src.config.settings import (
    AnalyticsSettings,
    BulkSettings,
    DatabaseSettings,
    GatewaySettings,
    MirrorSettings,
    RedisSettings,
    Settings,
)
from src.gateway.fallback import RecordStoreGateway

from tests.factories import InMemoryAuditSink, InMemoryRecordSource


class TestSections:
    """Each section reads its own environment prefix"""

    def test_prefixed_environment(self, monkeypatch):
        monkeypatch.setenv("GATEWAY_PRIMARY_TIMEOUT_SECONDS", "2.5")
        monkeypatch.setenv("BULK_MAX_BATCH_SIZE", "100")
        monkeypatch.setenv("POSTGRES_HOST", "db.internal")

        assert GatewaySettings().primary_timeout_seconds == 2.5
        assert BulkSettings().max_batch_size == 100
        assert DatabaseSettings().async_url.startswith("postgresql+asyncpg://backoffice:")
        assert "@db.internal:5432/" in DatabaseSettings().async_url

    def test_redis_url_override(self, monkeypatch):
        monkeypatch.delenv("REDIS_URL", raising=False)
        monkeypatch.delenv("REDIS_PASSWORD", raising=False)

        assert RedisSettings(host="cache", port=6380, db=2).get_url() == "redis://cache:6380/2"
        assert RedisSettings(REDIS_URL="redis://other:6379/1").get_url() == "redis://other:6379/1"

    @pytest.mark.parametrize("value", ["xlsx", "json"])
    def test_mirror_format_validated(self, value):
        with pytest.raises(PydanticValidationError):
            MirrorSettings(file_format=value)

    def test_counter_mode_normalized(self):
        assert AnalyticsSettings(counter_mode="INCREMENT").counter_mode == "increment"
        with pytest.raises(PydanticValidationError):
            AnalyticsSettings(counter_mode="lazy")

    def test_non_positive_limits_rejected(self):
        with pytest.raises(PydanticValidationError):
            BulkSettings(max_workers=0)


class TestSettings:
    def test_environment_validated(self):
        assert Settings(APP_ENV="Production").is_production
        with pytest.raises(PydanticValidationError):
            Settings(APP_ENV="qa")

    def test_services_built_from_settings(self, test_settings):
        gateway = RecordStoreGateway.from_settings(test_settings, InMemoryRecordSource())
        aggregator = MetricsAggregator.from_settings(test_settings, gateway)
        executor = BulkExecutor.from_settings(test_settings, gateway, InMemoryAuditSink())

        assert gateway.primary_timeout == test_settings.gateway.primary_timeout_seconds
        assert aggregator.max_days == 365
        assert aggregator.cache is None
        assert executor.max_batch_size == 50
        assert executor.max_workers == 4
