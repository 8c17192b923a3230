"""
Settings cache module.

This module provides in-memory caching of the YAML settings and the seed
file so that request handlers never touch the disk.
"""

import json
import os
import yaml
from typing import Dict, Any, Optional
from threading import Lock

CONFIG_DIR = os.path.join(os.path.dirname(__file__), "config")

DEFAULT_SETTINGS: Dict[str, Any] = {
    "valuation": {"daily_rate_value_factor": 0.15},
    "gaps": {
        "luxury_value_threshold": 75000,
        "budget_value_threshold": 25000,
        "slow_scan_threshold_ms": 500,
    },
}


class SettingsCache:
    """Thread-safe settings cache."""

    def __init__(self, config_dir: str = CONFIG_DIR):
        self._config_dir = config_dir
        self._settings: Optional[Dict[str, Any]] = None
        self._seed_data: Optional[Dict[str, Any]] = None
        self._lock = Lock()

    def get_settings(self) -> Dict[str, Any]:
        """Get cached settings, loading settings.yaml on first use."""
        if self._settings is None:
            with self._lock:
                if self._settings is None:  # Double-check locking
                    self._settings = self._load_settings()
        return self._settings

    def _load_settings(self) -> Dict[str, Any]:
        settings_file = os.path.join(self._config_dir, "settings.yaml")
        settings = {section: dict(values) for section, values in DEFAULT_SETTINGS.items()}
        if not os.path.exists(settings_file):
            return settings

        with open(settings_file, 'r') as f:
            loaded = yaml.safe_load(f) or {}

        # Merge per section so a partial file keeps the defaults
        for section, values in loaded.items():
            settings.setdefault(section, {}).update(values or {})
        return settings

    def get_seed_data(self) -> Dict[str, Any]:
        """Get cached seed data, loading from disk if not cached."""
        if self._seed_data is None:
            with self._lock:
                if self._seed_data is None:
                    seed_file = os.path.join(self._config_dir, "seed.json")
                    with open(seed_file, 'r') as f:
                        self._seed_data = json.load(f)
        return self._seed_data

    def get_value_factor(self) -> float:
        """Fraction of a year of daily rates used as a value estimate."""
        return float(self.get_settings()["valuation"]["daily_rate_value_factor"])

    def get_gap_thresholds(self) -> Dict[str, float]:
        """Thresholds used for gap recommendations."""
        gaps = self.get_settings()["gaps"]
        return {
            "luxury_value_threshold": float(gaps["luxury_value_threshold"]),
            "budget_value_threshold": float(gaps["budget_value_threshold"]),
            "slow_scan_threshold_ms": float(gaps["slow_scan_threshold_ms"]),
        }

    def clear_cache(self):
        """Clear all cached data (useful for testing)."""
        with self._lock:
            self._settings = None
            self._seed_data = None


# Global cache instance
settings_cache = SettingsCache()
