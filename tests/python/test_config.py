"""Tests for configuration module."""

import os
import pytest
import sys

# Add python directory to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '../../python'))

from skillswap_rtc.config import SignalingConfig, get_config, reset_config
from skillswap_rtc.config.settings import DEFAULT_STUN_URLS


class TestSignalingConfig:
    """Test SignalingConfig class."""

    def setup_method(self):
        """Reset config before each test."""
        reset_config()
        # Clear relevant env vars
        for key in list(os.environ.keys()):
            if key.startswith('SKILLSWAP_') and key != 'SKILLSWAP_LOG_LEVEL':
                del os.environ[key]

    def test_default_values(self):
        """Test default configuration values."""
        config = SignalingConfig()

        assert config.port == 8090
        assert config.poll_interval == 1.5
        assert config.require_accepted is True
        assert config.reset_candidates_on_offer is True
        assert config.ended_room_ttl == 600
        assert config.metrics_port is None
        assert config.bookings_path is None

    def test_default_stun_servers(self):
        """At least one public STUN server is configured by default."""
        config = SignalingConfig()

        assert config.stun_urls == DEFAULT_STUN_URLS
        assert 'stun:stun.l.google.com:19302' in config.stun_urls

    def test_env_var_override(self):
        """Test environment variable overrides."""
        os.environ['SKILLSWAP_PORT'] = '9000'
        os.environ['SKILLSWAP_POLL_INTERVAL'] = '0.5'
        os.environ['SKILLSWAP_REQUIRE_ACCEPTED'] = 'false'
        os.environ['SKILLSWAP_METRICS_PORT'] = '9100'

        config = SignalingConfig()

        assert config.port == 9000
        assert config.poll_interval == 0.5
        assert config.require_accepted is False
        assert config.metrics_port == 9100

    def test_stun_urls_from_env(self):
        """Test STUN URL list parsing."""
        os.environ['SKILLSWAP_STUN_URLS'] = 'stun:a.example.com:3478, stun:b.example.com:3478,#disabled'

        config = SignalingConfig()

        assert config.stun_urls == ['stun:a.example.com:3478', 'stun:b.example.com:3478']

    def test_empty_stun_list_falls_back(self):
        """An explicitly empty list falls back to the defaults."""
        config = SignalingConfig(stun_urls=[])

        assert config.stun_urls == DEFAULT_STUN_URLS

    def test_non_positive_poll_interval_rejected(self):
        """Test poll interval validation."""
        with pytest.raises(ValueError):
            SignalingConfig(poll_interval=0)

    def test_singleton_get_config(self):
        """Test singleton pattern of get_config."""
        config1 = get_config()
        config2 = get_config()

        assert config1 is config2

    def test_reset_config(self):
        """Test config reset."""
        config1 = get_config()
        reset_config()
        config2 = get_config()

        assert config1 is not config2


if __name__ == '__main__':
    pytest.main([__file__, '-v'])
