"""Session checkpoint and site permission storage."""

from tabpilot.storage.permissions import (
    DEFAULT_ALLOWED_ACTIONS,
    InMemoryPermissionStore,
    PermissionMode,
    PermissionStore,
    SitePermission,
    YamlPermissionStore,
    allow_action,
    deny_action,
    enable_ask_mode,
    enable_autonomous_mode,
    get_domain_from_url,
    increment_use_count,
    is_action_allowed,
    normalize_domain,
)
from tabpilot.storage.sessions import InMemorySessionStore, SessionStore, YamlSessionStore

__all__ = [
    "DEFAULT_ALLOWED_ACTIONS",
    "InMemoryPermissionStore",
    "InMemorySessionStore",
    "PermissionMode",
    "PermissionStore",
    "SessionStore",
    "SitePermission",
    "YamlPermissionStore",
    "YamlSessionStore",
    "allow_action",
    "deny_action",
    "enable_ask_mode",
    "enable_autonomous_mode",
    "get_domain_from_url",
    "increment_use_count",
    "is_action_allowed",
    "normalize_domain",
]
