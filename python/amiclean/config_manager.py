#!/usr/bin/env python3
"""
Configuration Manager for the AMI cleaner

This module handles loading and managing configuration from config.yaml
and environment variables.
"""

import logging
import os
import re
from typing import Any, Dict, Optional

import yaml


class ConfigValidationError(Exception):
    """Raised when configuration validation fails"""


def _parse_bool(value: Any) -> bool:
    """Interpret YAML/env style booleans ("true", "1", "yes")"""
    if isinstance(value, bool):
        return value
    if value is None:
        return False
    return str(value).strip().lower() in ("true", "1", "yes", "y", "on")


class ConfigManager:
    """Manages configuration for the AMI cleaner"""

    def __init__(self, config_file: str = None, validate: bool = True):
        """Initialize ConfigManager

        Args:
            config_file: Path to configuration YAML file (defaults to config.yaml or CONFIG_FILE env var)
            validate: If True, validate configuration on initialization
        """
        if config_file is None:
            config_file = os.environ.get("CONFIG_FILE", "config.yaml")
        self.config_file = config_file
        self.config = self._load_config()

        if validate:
            self.validate_config()

    def _load_config(self) -> Dict[str, Any]:
        """Load configuration from YAML file with defaults"""
        default_config = {
            "aws": {"region": "", "profile": ""},
            "selection": {
                "name_prefix": "",
                "retention_days": 30,
                "tag_key": "",
                "tag_value": "",
                "invert": False,
                "unused": False,
            },
            "analysis": {"output_dir": "reports"},
            "reports": {"purge_report": "ami-purge-report.json"},
            "security": {"dry_run_by_default": True, "require_confirmation": True},
        }

        try:
            if os.path.exists(self.config_file):
                with open(self.config_file, "r") as f:
                    user_config = yaml.safe_load(f) or {}
                return self._merge_config(default_config, user_config)
            else:
                logging.debug(f"Config file {self.config_file} not found, using defaults")
                return default_config
        except (OSError, yaml.YAMLError) as e:
            logging.error(f"Error loading config file: {e}")
            return default_config

    def _merge_config(self, default: Dict[str, Any], user: Dict[str, Any]) -> Dict[str, Any]:
        """Recursively merge user config with defaults"""
        result = default.copy()
        for key, value in user.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._merge_config(result[key], value)
            else:
                result[key] = value
        return result

    # AWS configuration
    def get_region(self) -> Optional[str]:
        """Get AWS region from environment or config.
        Priority: env AWS_REGION -> env REGION -> config.aws.region.
        Returns None so that boto3 falls back to its own resolution chain.
        """
        region = os.environ.get("AWS_REGION") or os.environ.get("REGION") or self.config["aws"].get("region")
        return region or None

    def get_profile(self) -> Optional[str]:
        """Get AWS profile from environment or config"""
        profile = os.environ.get("AWS_PROFILE") or os.environ.get("PROFILE") or self.config["aws"].get("profile")
        return profile or None

    # Selection policy
    def get_name_prefix(self) -> str:
        return self.config["selection"].get("name_prefix") or ""

    def get_retention_days(self) -> int:
        """Get retention days from config, with type coercion"""
        days = self.config["selection"].get("retention_days", 30)
        try:
            return int(days)
        except (ValueError, TypeError):
            raise ConfigValidationError(
                f"selection.retention_days must be an integer, got: {days} (type: {type(days).__name__})"
            )

    def get_tag_key(self) -> Optional[str]:
        return self.config["selection"].get("tag_key") or None

    def get_tag_value(self) -> Optional[str]:
        value = self.config["selection"].get("tag_value")
        # YAML turns unquoted values like 123 or true into non-strings
        return str(value) if value not in (None, "") else None

    def is_invert(self) -> bool:
        return _parse_bool(self.config["selection"].get("invert", False))

    def is_unused_only(self) -> bool:
        return _parse_bool(self.config["selection"].get("unused", False))

    # Output configuration
    def get_output_dir(self) -> str:
        """Get output directory from config"""
        return self.config["analysis"]["output_dir"]

    def _resolve_report_path(self, path: str) -> str:
        """Resolve report file path under the configured output_dir unless absolute or already a path.
        If the value is just a filename, prefix it with output_dir.
        """
        if os.path.isabs(path) or os.path.basename(path) != path:
            return path
        return os.path.join(self.get_output_dir(), path)

    def get_purge_report_path(self) -> str:
        """Get purge report path from config"""
        return self._resolve_report_path(self.config["reports"]["purge_report"])

    # Security configuration
    def is_dry_run_by_default(self) -> bool:
        """Get dry run default from config"""
        return _parse_bool(self.config["security"]["dry_run_by_default"])

    def requires_confirmation(self) -> bool:
        """Get confirmation requirement from config"""
        return _parse_bool(self.config["security"]["require_confirmation"])

    def validate_config(self) -> None:
        """Validate configuration values

        Raises:
            ConfigValidationError: If configuration is invalid
        """
        errors = []
        warnings = []

        region = self.get_region()
        if region and not self._is_valid_region(region):
            errors.append(f"AWS region '{region}' is invalid (expected format like us-east-1)")

        try:
            retention_days = self.get_retention_days()
        except ConfigValidationError as e:
            errors.append(str(e))
        else:
            if retention_days < 0:
                errors.append(f"selection.retention_days must be a non-negative integer, got: {retention_days}")
            elif retention_days == 0:
                warnings.append("selection.retention_days is 0, every image regardless of age is eligible")

        tag_key = self.get_tag_key()
        tag_value = self.get_tag_value()
        if tag_key and tag_value is None:
            errors.append(f"selection.tag_value is required when selection.tag_key ('{tag_key}') is set")
        if tag_value is not None and not tag_key:
            errors.append("selection.tag_key is required when selection.tag_value is set")
        if self.is_invert() and not tag_key:
            errors.append("selection.invert requires selection.tag_key and selection.tag_value")

        output_dir = self.get_output_dir()
        if not output_dir or not str(output_dir).strip():
            errors.append("output_dir is required and cannot be empty")

        for warning in warnings:
            logging.warning(f"Configuration warning: {warning}")

        if errors:
            error_msg = "Configuration validation failed:\n  " + "\n  ".join(errors)
            logging.error(error_msg)
            raise ConfigValidationError(error_msg)

    def _is_valid_region(self, region: str) -> bool:
        """Validate AWS region format (us-east-1, ap-southeast-2, us-gov-west-1)"""
        pattern = r"^[a-z]{2}(-[a-z]+)+-\d$"
        return bool(re.match(pattern, region))

    def print_config(self):
        """Print current configuration"""
        print("Current Configuration:")
        print(f"  AWS Region: {self.get_region() or '(boto3 default)'}")
        print(f"  AWS Profile: {self.get_profile() or '(boto3 default)'}")
        print(f"  Name Prefix: {self.get_name_prefix() or '(any)'}")
        print(f"  Retention Days: {self.get_retention_days()}")
        print(f"  Tag: {self.get_tag_key() or '(none)'}={self.get_tag_value() or ''}")
        print(f"  Invert Tag Match: {self.is_invert()}")
        print(f"  Unused Only: {self.is_unused_only()}")
        print(f"  Output Directory: {self.get_output_dir()}")
        print(f"  Dry Run Default: {self.is_dry_run_by_default()}")
        print(f"  Require Confirmation: {self.requires_confirmation()}")


# Global config manager instance
# Validation can be disabled by setting SKIP_CONFIG_VALIDATION=true environment variable
config_manager = ConfigManager(
    validate=os.environ.get("SKIP_CONFIG_VALIDATION", "").lower() not in ("true", "1", "yes")
)
