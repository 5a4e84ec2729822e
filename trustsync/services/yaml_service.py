"""YAML configuration file loading."""

import logging
from pathlib import Path
from typing import Any, Dict

import yaml

logger = logging.getLogger("trustsync")


class YAMLService:
    """Service for YAML file operations."""

    @staticmethod
    def load_yaml(file_path: Path) -> Dict[str, Any]:
        """
        Load YAML file and return as dictionary.

        Args:
            file_path: Path to YAML file

        Returns:
            Parsed YAML mapping (empty for an empty file)

        Raises:
            FileNotFoundError: If file doesn't exist
            yaml.YAMLError: If file is not valid YAML
            ValueError: If the document is not a mapping
        """
        if not file_path.exists():
            raise FileNotFoundError(f"YAML file not found: {file_path}")

        with open(file_path, "r", encoding="utf-8") as f:
            try:
                data = yaml.safe_load(f)
            except yaml.YAMLError as e:
                logger.error(f"Error parsing YAML file {file_path}: {e}")
                raise

        if data is None:
            return {}
        if not isinstance(data, dict):
            raise ValueError(f"{file_path} must contain a mapping, got {type(data).__name__}")
        logger.debug(f"Loaded YAML from: {file_path}")
        return data
