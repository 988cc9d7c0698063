"""
Per-request settings overrides.

A directory search may carry `settings_overrides` to tune the knobs that search
actually reads (today only the default radius). Only the dotted paths listed in
`OVERRIDABLE_SETTINGS` are accepted; the result is a new `Settings` object,
re-validated by Pydantic, and the shared cached settings are never touched.

Collection names, file paths and timeouts cannot be overridden.
"""

from __future__ import annotations

from typing import Any, Mapping

from studiopass.config.settings import Settings

OVERRIDABLE_SETTINGS: frozenset[str] = frozenset(
    {
        "directory.default_radius_km",
    }
)


def _sections(allowed: frozenset[str]) -> frozenset[str]:
    # "directory.default_radius_km" -> {"directory"}
    return frozenset(path.rsplit(".", 1)[0] for path in allowed if "." in path)


def _flatten(overrides: Mapping[str, Any], allowed: frozenset[str], prefix: str = "") -> dict[str, Any]:
    """Flatten a nested override payload to `{dotted_path: value}`, rejecting unknown paths."""
    sections = _sections(allowed)
    flat: dict[str, Any] = {}
    for key, value in overrides.items():
        path = f"{prefix}{key}"
        if path in allowed:
            flat[path] = value
        elif path in sections:
            if not isinstance(value, Mapping):
                raise ValueError(f"settings_overrides key '{path}' must be a mapping")
            flat.update(_flatten(value, allowed, prefix=f"{path}."))
        else:
            raise ValueError(f"settings_overrides contains a disallowed key: '{path}'")
    return flat


def _assign(payload: dict[str, Any], path: str, value: Any) -> None:
    *parents, leaf = path.split(".")
    node = payload
    for name in parents:
        node = node.setdefault(name, {})
    node[leaf] = value


def apply_settings_overrides(settings: Settings, overrides: Mapping[str, Any] | None) -> Settings:
    """Return `settings` with the whitelisted `overrides` applied.

    Raises:
        ValueError: On a disallowed key, a non-mapping section, or a value that
            fails validation (`pydantic.ValidationError` is a `ValueError`).
    """
    if not overrides:
        return settings

    flat = _flatten(overrides, OVERRIDABLE_SETTINGS)
    # model_dump returns fresh dicts, so assigning into it leaves `settings` alone.
    payload = settings.model_dump(mode="python")
    for path, value in flat.items():
        _assign(payload, path, value)
    return Settings.model_validate(payload)
