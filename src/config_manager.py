import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml
from pydantic import ValidationError

from mapping_models import FixedWidthSchema, MappingConfig

logger = logging.getLogger(__name__)

ConfigDocument = Union[MappingConfig, FixedWidthSchema]

CONFIG_SUFFIXES = ("*.yml", "*.yaml")


def _read_yaml(path: Path) -> Any:
    with open(path, 'r') as f:
        return yaml.safe_load(f)


def build_config_document(data: Any, source: str) -> ConfigDocument:
    """Validates a loaded YAML document as a mapping config or a fixed-width schema."""
    if not isinstance(data, dict):
        raise ValueError(f"{source}: expected a mapping at the top level")
    if "targets" in data:
        return MappingConfig.model_validate(data)
    if "dataFields" in data or "headerFields" in data:
        return FixedWidthSchema.model_validate(data)
    raise ValueError(f"{source}: neither a mapping config (targets) nor a fixed-width schema (dataFields)")


class ConfigManager:
    """
    Loads mapping configurations and fixed-width schemas from YAML files and
    supports partner-specific variants.

    Layout:
        <base>/edi315-mapping.yml
        <base>/railinc-schema.yml
        <base>/partner-specific/<partnerId>/edi315-mapping.yml
    """

    def __init__(self, config_base_path: str = "/opt/edi/config"):
        self.config_base_path = Path(config_base_path)
        self._mapping_configs: Dict[str, MappingConfig] = {}
        self._fixed_width_schemas: Dict[str, FixedWidthSchema] = {}
        self._partner_cache: Dict[str, ConfigDocument] = {}
        self._load_base_configs()

    def _load_base_configs(self):
        """Load base mapping configs and schemas from the config directory."""
        if not self.config_base_path.exists():
            logger.warning(f"Config base path does not exist: {self.config_base_path}")
            return

        logger.info(f"Loading EDI mapping configuration from: {self.config_base_path}")

        for pattern in CONFIG_SUFFIXES:
            for config_file in sorted(self.config_base_path.glob(pattern)):
                try:
                    document = build_config_document(_read_yaml(config_file), config_file.name)
                except (OSError, yaml.YAMLError, ValidationError, ValueError) as e:
                    logger.error(f"Failed to load config {config_file.name}: {e}")
                    continue
                if isinstance(document, MappingConfig):
                    self._mapping_configs[config_file.name] = document
                    logger.info(f"Loaded mapping config: {config_file.name} ({document.ediType} v{document.version})")
                else:
                    self._fixed_width_schemas[config_file.name] = document
                    logger.info(f"Loaded fixed-width schema: {config_file.name} ({document.name} v{document.version})")

    def _get_partner_document(self, name: str, partner_id: Optional[str]) -> Optional[ConfigDocument]:
        if not partner_id:
            return None
        cache_key = f"{partner_id}/{name}"
        if cache_key in self._partner_cache:
            return self._partner_cache[cache_key]

        partner_path = self.config_base_path / "partner-specific" / partner_id / name
        if not partner_path.exists():
            return None
        try:
            document = build_config_document(_read_yaml(partner_path), f"{partner_id}/{name}")
        except (OSError, yaml.YAMLError, ValidationError, ValueError) as e:
            logger.error(f"Failed to load partner config {partner_id}/{name}: {e}")
            return None
        # Two threads may load the same file; either result is equivalent
        self._partner_cache[cache_key] = document
        logger.info(f"Loaded partner-specific config: {partner_id}/{name}")
        return document

    def get_mapping_config(self, name: str, partner_id: Optional[str] = None) -> Optional[MappingConfig]:
        """
        Get a mapping config, preferring the partner-specific file over the base one.

        Args:
            name: File name of the config (e.g., "edi315-mapping.yml")
            partner_id: Trading partner identifier

        Returns:
            MappingConfig or None if not found
        """
        document = self._get_partner_document(name, partner_id)
        if isinstance(document, MappingConfig):
            return document
        if name in self._mapping_configs:
            return self._mapping_configs[name]
        logger.error(f"Mapping config not found: {name} for partner {partner_id}")
        return None

    def get_fixed_width_schema(self, name: str, partner_id: Optional[str] = None) -> Optional[FixedWidthSchema]:
        """Same lookup order as get_mapping_config, for fixed-width schemas."""
        document = self._get_partner_document(name, partner_id)
        if isinstance(document, FixedWidthSchema):
            return document
        if name in self._fixed_width_schemas:
            return self._fixed_width_schemas[name]
        logger.error(f"Fixed-width schema not found: {name} for partner {partner_id}")
        return None

    def list_mapping_configs(self) -> List[str]:
        return list(self._mapping_configs.keys())

    def list_fixed_width_schemas(self) -> List[str]:
        return list(self._fixed_width_schemas.keys())

    def reload(self):
        """Reload all configs from the filesystem."""
        self._mapping_configs.clear()
        self._fixed_width_schemas.clear()
        self._partner_cache.clear()
        self._load_base_configs()
