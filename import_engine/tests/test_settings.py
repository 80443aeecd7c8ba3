"""
Unit tests for environment-driven settings.
"""
import os
import unittest
from unittest.mock import patch

from import_engine.modules.settings import Settings, get_pipeline_settings


class TestPipelineSettings(unittest.TestCase):
    """Test cases for get_pipeline_settings"""

    @patch.dict(os.environ, {}, clear=True)
    def test_defaults(self):
        self.assertEqual(get_pipeline_settings(), Settings())

    @patch.dict(os.environ, {
        'IMPORT_MIN_CHUNK_SIZE': '10',
        'IMPORT_MAX_CHUNK_SIZE': '500',
        'IMPORT_ADAPTIVE_CHUNKING': 'false',
        'IMPORT_MEMORY_LIMIT_MB': '256',
        'IMPORT_MEMORY_WARNING_PERCENT': '0.6',
        'IMPORT_FAILURE_THRESHOLD': '3',
        'IMPORT_STATE_STORE': 'Redis',
        'IMPORT_REDIS_URL': 'redis://cache:6379/2',
    }, clear=True)
    def test_environment_overrides(self):
        settings = get_pipeline_settings()

        self.assertEqual(settings.min_chunk_size, 10)
        self.assertEqual(settings.max_chunk_size, 500)
        self.assertFalse(settings.adaptive_chunking)
        self.assertEqual(settings.memory_limit_mb, 256)
        self.assertEqual(settings.warning_threshold_percent, 0.6)
        self.assertEqual(settings.failure_threshold, 3)
        self.assertEqual(settings.state_store, 'redis')
        self.assertEqual(settings.redis_url, 'redis://cache:6379/2')

    @patch('import_engine.modules.settings.warning')
    @patch.dict(os.environ, {'IMPORT_RECOVERY_TIMEOUT': 'soon', 'IMPORT_CLEANUP_COOLDOWN': 'x'}, clear=True)
    def test_invalid_numbers_fall_back(self, mock_warning):
        settings = get_pipeline_settings()

        self.assertEqual(settings.recovery_timeout, 30)
        self.assertEqual(settings.cleanup_cooldown, 5.0)
        self.assertEqual(mock_warning.call_count, 2)


if __name__ == '__main__':
    unittest.main()
