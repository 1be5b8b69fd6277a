"""
Configuration loader for the property migration.

This module centralizes reading and validating migration settings from
`config/migration.yml`. The CLI, the verification script and tests should all
use this helper to keep configuration handling consistent.

Secrets (database URL, Appwrite API key) never live in this file; they are
read from the environment by the components that need them.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import yaml

logger = logging.getLogger(__name__)

VALID_PAGINATION_MODES = {"cursor", "offset"}
VALID_PHASES = ("resolve", "migrate", "media", "validate")

DEFAULT_REGION_LEXICON: dict[str, list[str]] = {
    "new cairo": ["new cairo", "fifth settlement", "madinaty", "hyde park", "mivida", "uptown"],
    "6th of october": ["6 october", "sheikh zayed", "beverly hills", "palm hills"],
    "north coast": ["north coast", "sahel", "marina", "alamein"],
    "giza": ["giza", "dokki", "mohandessin"],
}

DEFAULT_TYPE_CATEGORY_LEXICON: dict[str, list[str]] = {
    "villa": ["villa", "townhouse", "house"],
    "commercial": ["office", "commercial", "shop"],
}


@dataclass
class SourceSettings:
    """How the source collection is paged."""

    adapter: str = "appwrite"
    page_size: int = 500
    pagination: str = "cursor"
    materialize: bool = True


@dataclass
class MigrationSettings:
    """Batching and concurrency of the primary migration."""

    batch_size: int = 25
    max_workers: int = 4
    skip_unchanged: bool = False
    error_sample_size: int = 20


@dataclass
class DefaultIds:
    """Fallbacks used when a dimension reference cannot be resolved."""

    area_id: Optional[int] = None
    category_id: Optional[int] = 1
    type_id: Optional[int] = 1
    country_id: int = 1
    currency: str = "EGP"
    code_prefix: str = "PROP_"
    code_suffix_length: int = 8


@dataclass
class ValidationSettings:
    expected_count: Optional[int] = None
    success_threshold: float = 0.95
    sample_size: int = 1


@dataclass
class RegionSettings:
    """Keyword lexicon used to infer an area's region."""

    default: str = "cairo"
    fuzzy_threshold: int = 85
    lexicon: dict[str, list[str]] = field(
        default_factory=lambda: {k: list(v) for k, v in DEFAULT_REGION_LEXICON.items()}
    )


@dataclass
class CategorySettings:
    default: str = "residential"
    aliases: dict[str, str] = field(default_factory=lambda: {"residentail": "residential"})
    type_lexicon: dict[str, list[str]] = field(
        default_factory=lambda: {k: list(v) for k, v in DEFAULT_TYPE_CATEGORY_LEXICON.items()}
    )


@dataclass
class MigrationConfig:
    """Complete migration configuration."""

    source: SourceSettings = field(default_factory=SourceSettings)
    migration: MigrationSettings = field(default_factory=MigrationSettings)
    defaults: DefaultIds = field(default_factory=DefaultIds)
    validation: ValidationSettings = field(default_factory=ValidationSettings)
    regions: RegionSettings = field(default_factory=RegionSettings)
    categories: CategorySettings = field(default_factory=CategorySettings)

    def validate(self) -> None:
        """
        Check cross-field constraints.

        Raises:
            ValueError: If any setting is out of range
        """
        if self.source.pagination not in VALID_PAGINATION_MODES:
            raise ValueError(
                f"source.pagination must be one of {sorted(VALID_PAGINATION_MODES)}, "
                f"got '{self.source.pagination}'"
            )
        for name, value in (
            ("source.page_size", self.source.page_size),
            ("migration.batch_size", self.migration.batch_size),
            ("migration.max_workers", self.migration.max_workers),
        ):
            if value < 1:
                raise ValueError(f"{name} must be >= 1, got {value}")
        if not 0 < self.validation.success_threshold <= 1:
            raise ValueError("validation.success_threshold must be in (0, 1]")
        if not 0 <= self.regions.fuzzy_threshold <= 100:
            raise ValueError("regions.fuzzy_threshold must be between 0 and 100")


def _project_root() -> Path:
    """Return the project root path based on this file's location."""
    return Path(__file__).resolve().parent.parent.parent


def _section(raw: Mapping[str, Any], name: str) -> Mapping[str, Any]:
    section = raw.get(name) or {}
    if not isinstance(section, Mapping):
        raise ValueError(f"`{name}` section must be a mapping in migration configuration")
    return section


def _build(cls: type, section: Mapping[str, Any], name: str) -> Any:
    known = set(cls.__dataclass_fields__)
    unknown = set(section) - known
    if unknown:
        raise ValueError(f"Unknown keys in `{name}` section: {sorted(unknown)}")
    return cls(**dict(section))


def _lexicon(value: Any, name: str) -> dict[str, list[str]]:
    if not isinstance(value, Mapping):
        raise ValueError(f"`{name}` must map a label to a list of keywords")
    lexicon: dict[str, list[str]] = {}
    for label, keywords in value.items():
        if isinstance(keywords, str):
            keywords = [keywords]
        if not isinstance(keywords, list) or not all(isinstance(k, str) for k in keywords):
            raise ValueError(f"Keywords for '{label}' in `{name}` must be a list of strings")
        lexicon[str(label)] = list(keywords)
    return lexicon


def load_migration_config(config_path: str | None = None) -> MigrationConfig:
    """
    Load migration configuration from YAML file.

    Args:
        config_path: Optional override for the config file path. When omitted,
            `MIGRATION_CONFIG_PATH` is used, then `config/migration.yml`
            relative to the project root.

    Returns:
        Validated `MigrationConfig`.

    Raises:
        FileNotFoundError: If the configuration file does not exist.
        ValueError: If the YAML file cannot be parsed or has invalid structure.
    """
    env_path = os.getenv("MIGRATION_CONFIG_PATH")
    if config_path:
        path = Path(config_path)
    elif env_path:
        path = Path(env_path)
    else:
        path = _project_root() / "config" / "migration.yml"

    if not path.exists():
        logger.error("Migration configuration file not found: %s", path)
        raise FileNotFoundError(f"Migration configuration file not found: {path}")

    try:
        with path.open("r", encoding="utf-8") as handle:
            raw_config: Mapping[str, Any] | None = yaml.safe_load(handle)
    except yaml.YAMLError as exc:
        logger.error("Failed to parse migration configuration: %s", exc)
        raise ValueError(f"Invalid YAML in migration configuration: {exc}") from exc

    if not raw_config:
        logger.warning("Migration configuration file is empty, using defaults: %s", path)
        return MigrationConfig()

    if not isinstance(raw_config, Mapping):
        raise ValueError("Migration configuration must be a mapping at the top level")

    try:
        regions_section = dict(_section(raw_config, "regions"))
        if "lexicon" in regions_section:
            regions_section["lexicon"] = _lexicon(regions_section["lexicon"], "regions.lexicon")

        categories_section = dict(_section(raw_config, "categories"))
        if "type_lexicon" in categories_section:
            categories_section["type_lexicon"] = _lexicon(
                categories_section["type_lexicon"], "categories.type_lexicon"
            )

        config = MigrationConfig(
            source=_build(SourceSettings, _section(raw_config, "source"), "source"),
            migration=_build(MigrationSettings, _section(raw_config, "migration"), "migration"),
            defaults=_build(DefaultIds, _section(raw_config, "defaults"), "defaults"),
            validation=_build(ValidationSettings, _section(raw_config, "validation"), "validation"),
            regions=_build(RegionSettings, regions_section, "regions"),
            categories=_build(CategorySettings, categories_section, "categories"),
        )
    except TypeError as exc:
        raise ValueError(f"Invalid migration configuration: {exc}") from exc

    config.validate()

    logger.info(
        "Loaded migration configuration",
        extra={
            "config_path": str(path),
            "batch_size": config.migration.batch_size,
            "max_workers": config.migration.max_workers,
            "pagination": config.source.pagination,
        },
    )
    return config


__all__ = [
    "CategorySettings",
    "DefaultIds",
    "MigrationConfig",
    "MigrationSettings",
    "RegionSettings",
    "SourceSettings",
    "VALID_PHASES",
    "ValidationSettings",
    "load_migration_config",
]
