"""Test configuration system."""

import os
import pytest
from unittest.mock import patch

from pydantic import ValidationError

from quoteflow.config import Settings, get_settings


@pytest.mark.unit
def test_settings_creation():
    """Test settings object creation."""
    test_settings = Settings()

    # Check default values
    assert test_settings.app_name == "QuoteFlow"
    assert test_settings.app_version == "0.1.0"
    assert test_settings.max_tree_depth == 4
    assert test_settings.lock_resource_type == "quote-versions"


@pytest.mark.unit
def test_settings_environment_properties():
    """Test environment detection properties."""
    dev_settings = Settings(environment="development")
    assert dev_settings.is_development is True
    assert dev_settings.is_production is False
    assert dev_settings.is_testing is False

    prod_settings = Settings(environment="production")
    assert prod_settings.is_development is False
    assert prod_settings.is_production is True
    assert prod_settings.is_testing is False

    test_settings = Settings(environment="testing")
    assert test_settings.is_development is False
    assert test_settings.is_production is False
    assert test_settings.is_testing is True


@pytest.mark.unit
def test_settings_from_environment():
    """Test loading settings from environment variables."""
    with patch.dict(os.environ, {
        "APP_NAME": "TestApp",
        "DEBUG": "true",
        "MAX_TREE_DEPTH": "6",
        "API_BASE_URL": "https://quotes.example.com",
        "API_TIMEOUT": "5",
    }):
        test_settings = Settings()

        assert test_settings.app_name == "TestApp"
        assert test_settings.debug is True
        assert test_settings.max_tree_depth == 6
        assert test_settings.api_base_url == "https://quotes.example.com"
        assert test_settings.api_timeout == 5.0


@pytest.mark.unit
def test_settings_validation():
    """Test settings validation."""
    assert Settings(max_tree_depth="3").max_tree_depth == 3

    with pytest.raises(ValidationError):
        Settings(max_tree_depth=0)

    with pytest.raises(ValidationError):
        Settings(notice_history_limit=0)


@pytest.mark.unit
def test_cached_settings():
    """Test that get_settings returns cached instance."""
    settings1 = get_settings()
    settings2 = get_settings()

    # Should be the same instance due to lru_cache
    assert settings1 is settings2


@pytest.mark.unit
def test_api_configuration():
    """Test editor API configuration."""
    test_settings = Settings(
        api_base_url="http://editor:3000",
        api_timeout=12.5,
        api_token="token-123",
        lock_resource_type="quotes",
    )

    assert test_settings.api_base_url == "http://editor:3000"
    assert test_settings.api_timeout == 12.5
    assert test_settings.api_token == "token-123"
    assert test_settings.lock_resource_type == "quotes"
