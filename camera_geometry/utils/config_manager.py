"""
Configuration Management System

Handles loading, validation, and management of geometry and calibration parameters.
"""

import yaml
from typing import Dict, Any, Optional
from pathlib import Path


class ConfigManager:
    """Manages configuration parameters for the camera geometry components."""

    def __init__(self, config_path: Optional[str] = None):
        """
        Initialize configuration manager.

        Args:
            config_path: Path to configuration file. If None, uses default config.
        """
        self.config_path = config_path or self._get_default_config_path()
        self.config = self._load_config()
        self._validate_config()

    def _get_default_config_path(self) -> str:
        """Get path to default configuration file shipped with the package."""
        package_dir = Path(__file__).parent.parent
        return str(package_dir / "config" / "default_config.yaml")

    def _load_config(self) -> Dict[str, Any]:
        """Load configuration from YAML file."""
        try:
            with open(self.config_path, 'r') as file:
                config = yaml.safe_load(file)
        except FileNotFoundError:
            raise FileNotFoundError(f"Configuration file not found: {self.config_path}")
        except yaml.YAMLError as e:
            raise ValueError(f"Error parsing configuration file: {e}")

        if config is None:
            return {}
        if not isinstance(config, dict):
            raise ValueError(f"Configuration root must be a mapping: {self.config_path}")
        return config

    def _validate_config(self) -> None:
        """Validate configuration parameters for consistency and feasibility."""
        # Iterative undistortion budget
        dist = self.config.get('distortion', {})
        if int(dist.get('max_iterations', 100)) < 1:
            raise ValueError("distortion.max_iterations must be at least 1")
        if float(dist.get('tolerance', 1e-10)) <= 0:
            raise ValueError("distortion.tolerance must be positive")

        # Boundary sampling for adjustment search
        adj = self.config.get('adjustment', {})
        if int(adj.get('samples_per_edge', 64)) < 2:
            raise ValueError("adjustment.samples_per_edge must be at least 2")
        if float(adj.get('max_scale', 1000.0)) <= 1.0:
            raise ValueError("adjustment.max_scale must be greater than 1")
        if float(adj.get('search_tolerance', 1e-9)) <= 0:
            raise ValueError("adjustment.search_tolerance must be positive")
        if int(adj.get('max_search_iterations', 200)) < 1:
            raise ValueError("adjustment.max_search_iterations must be at least 1")

        # Direction field partitioning
        df = self.config.get('direction_field', {})
        if int(df.get('workers', 1)) < 1:
            raise ValueError("direction_field.workers must be at least 1")
        if int(df.get('rows_per_task', 64)) < 1:
            raise ValueError("direction_field.rows_per_task must be at least 1")

        ra = self.config.get('rigid_alignment', {})
        if float(ra.get('degenerate_tolerance', 1e-9)) <= 0:
            raise ValueError("rigid_alignment.degenerate_tolerance must be positive")

        # Calibration model selection
        calib = self.config.get('calibration', {})
        num_radial = int(calib.get('num_radial', 2))
        if num_radial < 0 or num_radial > 3:
            raise ValueError("calibration.num_radial must be between 0 and 3")
        if float(calib.get('max_rms_error', 5.0)) <= 0:
            raise ValueError("calibration.max_rms_error must be positive")

        # Quality thresholds
        val = self.config.get('validation', {})
        min_baseline = float(val.get('min_baseline', 0.01))
        max_baseline = float(val.get('max_baseline', 2.0))
        if min_baseline >= max_baseline:
            raise ValueError("validation.min_baseline must be less than validation.max_baseline")
        if float(val.get('min_focal_length', 100.0)) >= float(val.get('max_focal_length', 10000.0)):
            raise ValueError("validation.min_focal_length must be less than validation.max_focal_length")

    def get(self, key: str, default: Any = None) -> Any:
        """
        Get configuration value using dot notation.

        Args:
            key: Configuration key (e.g., 'distortion.max_iterations')
            default: Default value if key not found

        Returns:
            Configuration value
        """
        keys = key.split('.')
        value = self.config

        for k in keys:
            if isinstance(value, dict) and k in value:
                value = value[k]
            else:
                return default

        return value

    def set(self, key: str, value: Any) -> None:
        """
        Set configuration value using dot notation.

        Args:
            key: Configuration key (e.g., 'adjustment.samples_per_edge')
            value: Value to set
        """
        keys = key.split('.')
        config_ref = self.config

        for k in keys[:-1]:
            if k not in config_ref:
                config_ref[k] = {}
            config_ref = config_ref[k]

        config_ref[keys[-1]] = value
        self._validate_config()

    def save(self, output_path: Optional[str] = None) -> None:
        """
        Save current configuration to file.

        Args:
            output_path: Path to save configuration. If None, overwrites current file.
        """
        save_path = output_path or self.config_path

        with open(save_path, 'w') as file:
            yaml.dump(self.config, file, default_flow_style=False, indent=2)

    def get_distortion_params(self) -> Dict[str, Any]:
        """Get iterative undistortion parameters as a dictionary."""
        return self.config.get('distortion', {})

    def get_adjustment_params(self) -> Dict[str, Any]:
        """Get adjustment search parameters as a dictionary."""
        return self.config.get('adjustment', {})

    def get_direction_field_params(self) -> Dict[str, Any]:
        """Get direction field generation parameters as a dictionary."""
        return self.config.get('direction_field', {})

    def get_alignment_params(self) -> Dict[str, Any]:
        """Get rigid alignment parameters as a dictionary."""
        return self.config.get('rigid_alignment', {})

    def get_calibration_params(self) -> Dict[str, Any]:
        """Get calibration model parameters as a dictionary."""
        return self.config.get('calibration', {})

    def get_validation_params(self) -> Dict[str, Any]:
        """Get calibration quality thresholds as a dictionary."""
        return self.config.get('validation', {})
