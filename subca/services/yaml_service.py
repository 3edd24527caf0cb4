"""YAML file operations service."""

import logging
from pathlib import Path
from typing import Any, Dict

import yaml
from pydantic import BaseModel

logger = logging.getLogger("subca")


class YAMLService:
    """Service for YAML file operations."""

    @staticmethod
    def load_yaml(file_path: Path) -> Dict[str, Any]:
        """
        Load YAML file and return as dictionary.

        Args:
            file_path: Path to YAML file

        Returns:
            Parsed YAML content as dictionary

        Raises:
            FileNotFoundError: If file doesn't exist
            yaml.YAMLError: If file is not valid YAML
        """
        if not file_path.exists():
            raise FileNotFoundError(f"YAML file not found: {file_path}")

        with open(file_path, "r", encoding="utf-8") as f:
            try:
                data = yaml.safe_load(f)
                logger.debug(f"Loaded YAML from: {file_path}")
                return data or {}
            except yaml.YAMLError as e:
                logger.error(f"Error parsing YAML file {file_path}: {e}")
                raise

    @staticmethod
    def save_yaml(file_path: Path, data: Dict[str, Any]) -> None:
        """
        Save dictionary to YAML file.

        Args:
            file_path: Path to save YAML file
            data: Data to save

        Raises:
            yaml.YAMLError: If data cannot be serialized to YAML
        """
        file_path.parent.mkdir(parents=True, exist_ok=True)

        with open(file_path, "w", encoding="utf-8") as f:
            try:
                yaml.safe_dump(
                    data,
                    f,
                    default_flow_style=False,
                    allow_unicode=True,
                    sort_keys=False,
                )
                f.flush()
                logger.debug(f"Saved YAML to: {file_path}")
            except yaml.YAMLError as e:
                logger.error(f"Error saving YAML file {file_path}: {e}")
                raise

    @staticmethod
    def save_model(file_path: Path, model: BaseModel) -> None:
        """
        Save a pydantic model as YAML.

        Args:
            file_path: Path to save YAML file
            model: Model instance to serialize
        """
        YAMLService.save_yaml(file_path, model.model_dump(mode="json"))

    @staticmethod
    def load_model(file_path: Path, model_cls: type) -> BaseModel:
        """
        Load a YAML file into a pydantic model.

        Args:
            file_path: Path to YAML file
            model_cls: Model class to validate into

        Returns:
            Model instance
        """
        return model_cls.model_validate(YAMLService.load_yaml(file_path))
