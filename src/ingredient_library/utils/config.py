"""
Configuration management for the Ingredient Library.

This module handles:
- Storage location configuration (database path, environment)
- Table behaviour configuration (selection, pagination, sorting, grouping,
  comparison, data source, performance)
- Validation, merging, presets and JSON import/export of table configuration

Configuration values are immutable. Updates go through merge_config(), which
returns a new TableConfig, and the value is passed explicitly to whatever
needs it. There is no module-level configuration singleton.
"""

import json
import logging
import os
from dataclasses import asdict, dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from .constants import (
    DATABASE_FILENAME,
    DEFAULT_COMPARE_MAX,
    DEFAULT_COMPARE_MIN,
    DEFAULT_PAGE_SIZE,
    GROUP_BY_OPTIONS,
    PAGE_SIZE_OPTIONS,
)

logger = logging.getLogger(__name__)

ENV_VAR_ENVIRONMENT = "INGREDIENT_LIBRARY_ENV"
ENV_VAR_DATABASE_URL = "INGREDIENT_LIBRARY_DATABASE_URL"

DATA_SOURCE_TYPES = ("local", "api", "database")


class Config:
    """
    Storage configuration for the persistence layer.

    Resolves where saved views, preferences and the optional ingredient
    database live for a given environment.
    """

    def __init__(self, environment: Optional[str] = None):
        """
        Initialize configuration.

        Args:
            environment: 'production' or 'development'. If None, reads
                INGREDIENT_LIBRARY_ENV and defaults to production.
        """
        if environment is None:
            environment = os.environ.get(ENV_VAR_ENVIRONMENT, "production")
        self.environment = environment

        if environment == "development":
            self._base_dir = self._get_project_data_dir()
        else:
            self._base_dir = self._get_user_config_dir()

        self._database_path = self._base_dir / DATABASE_FILENAME

    def _get_project_data_dir(self) -> Path:
        """Get the project's data/ directory for development."""
        project_root = Path(__file__).parent.parent.parent.parent
        return project_root / "data"

    def _get_user_config_dir(self) -> Path:
        """Get the platform-appropriate config directory for production."""
        if os.name == "nt":  # Windows
            base = Path(os.environ.get("APPDATA", Path.home()))
        elif os.name == "posix":
            if "darwin" in os.uname().sysname.lower():  # macOS
                base = Path.home() / "Library" / "Application Support"
            else:  # Linux
                base = Path(os.environ.get("XDG_CONFIG_HOME", Path.home() / ".config"))
        else:
            base = Path.home()

        return base / "IngredientLibrary"

    def ensure_directories(self) -> None:
        """Create the storage directory if it doesn't exist."""
        self._base_dir.mkdir(parents=True, exist_ok=True)

    @property
    def database_path(self) -> Path:
        """Full path to the database file."""
        return self._database_path

    @property
    def database_url(self) -> str:
        """
        SQLAlchemy database URL.

        INGREDIENT_LIBRARY_DATABASE_URL overrides the file-based default.
        """
        override = os.environ.get(ENV_VAR_DATABASE_URL)
        if override:
            return override
        db_path_str = str(self._database_path).replace("\\", "/")
        return f"sqlite:///{db_path_str}"

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.environment == "development"

    def __repr__(self) -> str:
        """String representation of config."""
        return f"Config(environment='{self.environment}', database_path='{self._database_path}')"


# ============================================================================
# Table Configuration
# ============================================================================


@dataclass(frozen=True)
class SelectionConfig:
    enable_row_selection: bool = True
    enable_child_row_selection: bool = False
    enable_multi_row_selection: bool = True
    max_selections: Optional[int] = 10


@dataclass(frozen=True)
class PaginationConfig:
    default_page_size: int = DEFAULT_PAGE_SIZE
    page_size_options: Tuple[int, ...] = tuple(PAGE_SIZE_OPTIONS)


@dataclass(frozen=True)
class SortingConfig:
    enable_multi_column_sorting: bool = True
    default_sort_column: Optional[str] = "name"
    default_sort_desc: bool = False


@dataclass(frozen=True)
class GroupingConfig:
    enabled: bool = True
    available_group_by: Tuple[str, ...] = tuple(GROUP_BY_OPTIONS)
    default_group_by: Optional[str] = None


@dataclass(frozen=True)
class ComparisonConfig:
    enabled: bool = True
    min_items: int = DEFAULT_COMPARE_MIN
    max_items: int = DEFAULT_COMPARE_MAX


@dataclass(frozen=True)
class DataSourceConfig:
    type: str = "local"
    api_url: Optional[str] = None
    database_url: Optional[str] = None
    retry_attempts: int = 3
    retry_delay: float = 1.0  # seconds; first backoff step
    retry_max_delay: float = 10.0


@dataclass(frozen=True)
class PerformanceConfig:
    debounce_search_ms: int = 300
    autosave_delay_ms: int = 1000


@dataclass(frozen=True)
class TableConfig:
    """
    Immutable table behaviour configuration.

    Each section is its own frozen dataclass; use merge_config() to derive a
    modified copy.
    """

    selection: SelectionConfig = field(default_factory=SelectionConfig)
    pagination: PaginationConfig = field(default_factory=PaginationConfig)
    sorting: SortingConfig = field(default_factory=SortingConfig)
    grouping: GroupingConfig = field(default_factory=GroupingConfig)
    comparison: ComparisonConfig = field(default_factory=ComparisonConfig)
    data_source: DataSourceConfig = field(default_factory=DataSourceConfig)
    performance: PerformanceConfig = field(default_factory=PerformanceConfig)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a JSON-compatible dictionary."""
        result = asdict(self)
        for section in result.values():
            for key, value in section.items():
                if isinstance(value, tuple):
                    section[key] = list(value)
        return result


DEFAULT_TABLE_CONFIG = TableConfig()


def _merge_section(section: Any, overrides: Dict[str, Any]) -> Any:
    known = {f.name: f for f in fields(section)}
    updates = {}
    for key, value in overrides.items():
        if key not in known:
            logger.debug(f"Ignoring unknown config key '{key}' in {type(section).__name__}")
            continue
        if isinstance(getattr(section, key), tuple) and isinstance(value, list):
            value = tuple(value)
        updates[key] = value
    return replace(section, **updates)


def merge_config(base: TableConfig, overrides: Dict[str, Any]) -> TableConfig:
    """
    Merge a (possibly partial) nested dictionary over a configuration.

    Args:
        base: Configuration to start from (not modified)
        overrides: Mapping of section name -> mapping of field -> value

    Returns:
        New TableConfig with the overrides applied section-wise
    """
    sections = {}
    for section_name, section_overrides in (overrides or {}).items():
        if not hasattr(base, section_name) or not isinstance(section_overrides, dict):
            logger.debug(f"Ignoring unknown config section '{section_name}'")
            continue
        sections[section_name] = _merge_section(getattr(base, section_name), section_overrides)
    return replace(base, **sections)


def validate_config(config: TableConfig) -> List[str]:  # noqa: C901
    """
    Validate a table configuration.

    Args:
        config: Configuration to validate

    Returns:
        List of human-readable error messages (empty if valid)
    """
    errors = []

    if config.pagination.default_page_size <= 0:
        errors.append("Default page size must be greater than 0")
    if any(size <= 0 for size in config.pagination.page_size_options):
        errors.append("Page size options must all be greater than 0")

    max_selections = config.selection.max_selections
    if max_selections is not None and max_selections <= 0:
        errors.append("Max selections must be greater than 0")

    if config.comparison.min_items < 1:
        errors.append("Comparison minimum must be at least 1")
    if config.comparison.min_items > config.comparison.max_items:
        errors.append("Comparison minimum must not exceed comparison maximum")

    data_source = config.data_source
    if data_source.type not in DATA_SOURCE_TYPES:
        errors.append(f"Unknown data source type '{data_source.type}'")
    if data_source.type == "api" and not data_source.api_url:
        errors.append("API URL is required when using API data source")
    if data_source.type == "database" and not data_source.database_url:
        errors.append("Database URL is required when using database data source")
    if data_source.retry_attempts < 1:
        errors.append("Retry attempts must be at least 1")
    if data_source.retry_delay < 0:
        errors.append("Retry delay must be non-negative")

    if config.performance.debounce_search_ms < 0:
        errors.append("Debounce search time must be non-negative")
    if config.performance.autosave_delay_ms < 0:
        errors.append("Auto-save delay must be non-negative")

    grouping = config.grouping
    if grouping.default_group_by is not None and grouping.default_group_by not in grouping.available_group_by:
        errors.append(f"Default group-by '{grouping.default_group_by}' is not an available option")

    return errors


def config_to_json(config: TableConfig) -> str:
    """Serialize a configuration to JSON."""
    return json.dumps(config.to_dict(), indent=2)


def config_from_json(config_json: str, base: TableConfig = DEFAULT_TABLE_CONFIG) -> TableConfig:
    """
    Parse and validate a configuration exported by config_to_json().

    Missing sections and fields fall back to base.

    Raises:
        SerializationError: If config_json is not a JSON object
        ValidationError: If the parsed configuration is invalid
    """
    from ..services.exceptions import SerializationError, ValidationError

    try:
        data = json.loads(config_json)
    except (json.JSONDecodeError, TypeError) as e:
        raise SerializationError(f"Invalid configuration JSON: {e}", e)
    if not isinstance(data, dict):
        raise SerializationError("Configuration must be a JSON object")

    try:
        config = merge_config(base, data)
    except TypeError as e:
        raise SerializationError(f"Unreadable configuration: {e}", e)

    try:
        errors = validate_config(config)
    except TypeError as e:
        errors = [f"Configuration contains a value of the wrong type: {e}"]
    if errors:
        raise ValidationError(errors)
    return config


CONFIG_PRESETS: Dict[str, Dict[str, Any]] = {
    "full_featured": {},
    "minimal": {
        "grouping": {"enabled": False},
        "comparison": {"enabled": False},
        "sorting": {"enable_multi_column_sorting": False},
    },
    "read_only": {
        "selection": {"enable_row_selection": False, "enable_multi_row_selection": False},
        "comparison": {"enabled": False},
    },
    "api_connected": {
        "data_source": {"type": "api"},
    },
}


def get_preset(name: str, base: TableConfig = DEFAULT_TABLE_CONFIG) -> TableConfig:
    """
    Get a predefined configuration preset.

    The api_connected preset still needs an api_url before it validates.

    Raises:
        KeyError: If the preset name is unknown
    """
    return merge_config(base, CONFIG_PRESETS[name])
