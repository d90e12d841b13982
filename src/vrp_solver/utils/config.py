"""
Configuration utility for the VRP solver.
"""

import copy
import json
import os
import logging

from .errors import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULTS = {
    "search": {
        "population_size": 4,
        "offspring_per_generation": 1,
        "workers": 1,
        "max_generations": 1000,
        "max_time": None,
        "max_stagnation": None,
        "seed": 42,
        "tournament_size": 2,
        "diversity_threshold": 0.05,
        "progress": False,
    },
    "operators": {
        "ruin": ["random_jobs", "random_segment", "worst_jobs", "neighbourhood", "cluster", "route"],
        "recreate": ["regret", "cheapest", "random"],
        "min_ruin_ratio": 0.1,
        "max_ruin_ratio": 0.3,
        "max_ruined_jobs": 30,
        "segment_size": 50,
        "weights_decay": 0.8,
        "min_weight": 0.05,
        "regret_k": 3,
        "blink_rate": 0.01,
        "noise_parameter": 0.1,
        "cluster_min_samples": 2,
    },
    "objective": {
        "mode": "lexicographic",
        "criteria": ["unassigned", "tardiness", "cost"],
        "tie_break": "routes",
        "unassigned_penalty": 10000.0,
        "tardiness_penalty": 100.0,
    },
    "constraints": {
        "time_windows": "hard",
    },
}


class Config:
    """
    Configuration class for the VRP solver.
    Handles loading and accessing configuration parameters.
    """

    def __init__(self, source=None):
        """
        Initialize the configuration.

        Args:
            source (str|dict, optional): Path to a JSON configuration file, or an
                already parsed dictionary. Missing sections and keys fall back to
                the defaults.
        """
        if isinstance(source, dict):
            self.config_path = None
            self.config = copy.deepcopy(source)
        else:
            self.config_path = source
            self.config = self._load_config() if source else {}

        for section, values in DEFAULTS.items():
            if not isinstance(self.config.get(section), dict):
                self.config[section] = {}
            for key, value in values.items():
                if key not in self.config[section]:
                    self.config[section][key] = copy.deepcopy(value)

        self._check()

    def _load_config(self):
        """
        Load configuration from JSON file.

        Returns:
            dict: Configuration dictionary.
        """
        if not os.path.exists(self.config_path):
            logger.warning(f"Configuration file {self.config_path} not found. Using default values.")
            return {}

        try:
            with open(self.config_path, 'r') as f:
                return json.load(f)
        except json.JSONDecodeError:
            logger.error(f"Error parsing configuration file {self.config_path}. Using default values.")
            return {}

    def _check(self):
        mode = self.get('objective.mode')
        if mode not in ("lexicographic", "pareto", "weighted"):
            raise ConfigurationError(f"unknown objective mode: {mode}")

        policy = self.get('constraints.time_windows')
        if policy not in ("hard", "soft"):
            raise ConfigurationError(f"unknown time window policy: {policy}")

        if self.get('search.population_size') < 1:
            raise ConfigurationError("search.population_size must be at least 1")
        if self.get('search.workers') < 1:
            raise ConfigurationError("search.workers must be at least 1")
        if self.get('search.offspring_per_generation') < 1:
            raise ConfigurationError("search.offspring_per_generation must be at least 1")

        low = self.get('operators.min_ruin_ratio')
        high = self.get('operators.max_ruin_ratio')
        if not 0 <= low <= high <= 1:
            raise ConfigurationError(f"invalid ruin ratio range: [{low}, {high}]")

        if not self.get('operators.ruin') or not self.get('operators.recreate'):
            raise ConfigurationError("at least one ruin and one recreate operator must be enabled")

    def get(self, key, default=None):
        """
        Get a configuration value.

        Args:
            key (str): Configuration key, use dot notation for nested keys (e.g. 'search.seed').
            default: Default value if key is not found.

        Returns:
            Configuration value for the key or default if not found.
        """
        keys = key.split('.')
        value = self.config
        for k in keys:
            if isinstance(value, dict) and k in value:
                value = value[k]
            else:
                return default
        return value

    def set(self, key, value):
        """
        Set a configuration value using dot notation.

        Args:
            key (str): Configuration key (e.g. 'search.max_generations').
            value: New value.
        """
        keys = key.split('.')
        target = self.config
        for k in keys[:-1]:
            target = target.setdefault(k, {})
        target[keys[-1]] = value
        self._check()

    def save(self, config_path=None):
        """
        Save current configuration to a file.

        Args:
            config_path (str, optional): Path to save configuration. Defaults to self.config_path.
        """
        if config_path is None:
            config_path = self.config_path
        if config_path is None:
            raise ConfigurationError("no path given to save the configuration to")

        with open(config_path, 'w') as f:
            json.dump(self.config, f, indent=4)

        logger.info(f"Configuration saved to {config_path}")

    def __str__(self):
        """Return string representation of the configuration."""
        return json.dumps(self.config, indent=2)
