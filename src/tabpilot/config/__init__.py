"""Configuration management for tabpilot.

Provides hierarchical YAML-based configuration with:
- System-level config (/etc/tabpilot/ or %PROGRAMDATA%)
- User-level config (~/.config/tabpilot/, ~/.tabpilot/ or %APPDATA%)
- Project-level config ($project_root/.tabpilot/)
- Environment variable overrides (highest priority)

Example usage:
    from tabpilot.config import load_config

    config = load_config(project_root="/path/to/project")
    print(config.dialogue.max_refine_iterations)
"""

from tabpilot.config.loader import (
    dict_to_config,
    get_config,
    load_config,
    on_config_reload,
    reload_config,
    reset_config,
)
from tabpilot.config.paths import (
    get_config_paths,
    get_default_state_dir,
    get_project_config_path,
    get_system_config_path,
    get_user_config_path,
)
from tabpilot.config.schema import (
    AuditConfig,
    Config,
    DialogueConfig,
    LoggingConfig,
    PermissionsConfig,
    PlannerConfig,
    StorageConfig,
)

__all__ = [
    "Config",
    "load_config",
    "get_config",
    "reload_config",
    "reset_config",
    "on_config_reload",
    "dict_to_config",
    "AuditConfig",
    "DialogueConfig",
    "LoggingConfig",
    "PermissionsConfig",
    "PlannerConfig",
    "StorageConfig",
    "get_config_paths",
    "get_default_state_dir",
    "get_system_config_path",
    "get_user_config_path",
    "get_project_config_path",
]
