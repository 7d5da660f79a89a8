"""Health customizations — user-supplied Lua checks parsed from ConfigMap data."""

from .loader import (
    EMPTY_SNAPSHOT,
    CustomizationSnapshot,
    CustomizationStore,
    ScriptOverride,
    flat_key,
    load_config_map,
    parse_config_map_data,
)
