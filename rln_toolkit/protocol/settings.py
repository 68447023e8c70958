"""
Runtime settings for the RLN toolkit.

Settings come from (highest precedence first) explicit arguments,
`RLN_*` environment variables, an optional YAML file, and the defaults
in `config.py`. The hasher backend additionally supports an in-memory
override for tests.

WARNING: the hasher backend changes every commitment, nullifier and
Merkle root. All parties of one RLN deployment must agree on it.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any, Final, Mapping, Optional

import yaml

from .config import (
    DEFAULT_CACHE_LENGTH,
    DEFAULT_PROVER_TIMEOUT,
    DEFAULT_TREE_DEPTH,
    MAX_TREE_DEPTH,
    MIN_TREE_DEPTH,
    SNARK_FIELD_SIZE,
)
from .exceptions import ConfigurationError

_VALID_HASHERS: Final[tuple[str, ...]] = ("poseidon", "sha256")
_DEFAULT_HASHER: Final[str] = "poseidon"
_ENV_VAR_NAME: Final[str] = "RLN_HASH_BACKEND"

_ENV_OVERRIDES: Final[dict[str, str]] = {
    "tree_depth": "RLN_TREE_DEPTH",
    "cache_length": "RLN_CACHE_LENGTH",
    "params_dir": "RLN_PARAMS_DIR",
    "prover_timeout": "RLN_PROVER_TIMEOUT",
    "rln_identifier": "RLN_IDENTIFIER",
}

_hasher_override: str | None = None


def _format_valid_options() -> str:
    return ", ".join(_VALID_HASHERS)


def _normalize_hasher(value: str | None) -> str | None:
    if value is None:
        return None

    if not isinstance(value, str):
        raise ValueError(
            f"Invalid hasher type: {value!r}. Valid options: {_format_valid_options()}"
        )

    if value == "":
        return None

    if value not in _VALID_HASHERS:
        raise ValueError(
            f"Invalid hasher type: {value!r}. Valid options: {_format_valid_options()}"
        )

    return value


def get_hasher_type(prefer: str | None = None) -> str:
    """
    Resolve hasher backend in precedence order.

    Args:
        prefer: Optional preferred hasher type.

    Returns:
        Hasher type string.

    Raises:
        ValueError: If a provided hasher value is invalid.
    """
    preferred = _normalize_hasher(prefer)
    if preferred is not None:
        return preferred

    if _hasher_override is not None:
        return _hasher_override

    env_hasher = _normalize_hasher(os.getenv(_ENV_VAR_NAME))
    if env_hasher is not None:
        return env_hasher

    return _DEFAULT_HASHER


def set_hasher_type(value: str | None) -> None:
    """
    Set in-memory hasher override (testing only).

    Args:
        value: Hasher type to force, or None to clear the override.

    Raises:
        ValueError: If the value is invalid.
    """
    global _hasher_override
    _hasher_override = _normalize_hasher(value)


@dataclass(frozen=True)
class RLNSettings:
    """
    Deployment settings for an RLN application.

    Attributes:
        tree_depth: Depth of the membership tree (16..32)
        cache_length: Number of epochs the proof cache keeps (0 = unbounded)
        hasher: Field hasher backend name
        params_dir: Directory holding circuit wasm/zkey/vkey files
        prover_timeout: Seconds allowed for one external prover call
        rln_identifier: Application identifier, if fixed by configuration
    """

    tree_depth: int = DEFAULT_TREE_DEPTH
    cache_length: int = DEFAULT_CACHE_LENGTH
    hasher: str = _DEFAULT_HASHER
    params_dir: Optional[str] = None
    prover_timeout: int = DEFAULT_PROVER_TIMEOUT
    rln_identifier: Optional[int] = None

    def validate(self) -> None:
        if not MIN_TREE_DEPTH <= self.tree_depth <= MAX_TREE_DEPTH:
            raise ConfigurationError(
                f"tree_depth must be in [{MIN_TREE_DEPTH}, {MAX_TREE_DEPTH}], "
                f"got {self.tree_depth}"
            )
        if self.cache_length < 0:
            raise ConfigurationError("cache_length must be >= 0")
        if self.prover_timeout <= 0:
            raise ConfigurationError("prover_timeout must be > 0")
        try:
            _normalize_hasher(self.hasher)
        except ValueError as exc:
            raise ConfigurationError(str(exc)) from exc
        if self.rln_identifier is not None and not (
            0 <= self.rln_identifier < SNARK_FIELD_SIZE
        ):
            raise ConfigurationError("rln_identifier must be a field element")


def _coerce(name: str, value: Any) -> Any:
    if value is None and name in ("params_dir", "rln_identifier"):
        return None
    if name in ("tree_depth", "cache_length", "prover_timeout"):
        return int(value)
    if name == "rln_identifier":
        # YAML may carry large identifiers as strings
        return int(str(value), 0)
    return str(value)


def load_settings(
    path: str | Path | None = None,
    env: Optional[Mapping[str, str]] = None,
    **overrides: Any,
) -> RLNSettings:
    """
    Load settings from YAML, environment and keyword overrides.

    Args:
        path: Optional YAML file with a mapping of setting names
        env: Environment mapping (defaults to os.environ)
        **overrides: Explicit values that win over everything else

    Returns:
        Validated RLNSettings

    Raises:
        ConfigurationError: If the file is malformed or a value is invalid

    Example:
        >>> settings = load_settings(tree_depth=16)
        >>> settings.tree_depth
        16
    """
    known = {f.name for f in fields(RLNSettings)}
    values: dict[str, Any] = {}

    if path is not None:
        try:
            with open(path, "r", encoding="utf-8") as fh:
                data = yaml.safe_load(fh) or {}
        except (OSError, yaml.YAMLError) as exc:
            raise ConfigurationError(f"Failed to read settings file {path}: {exc}") from exc
        if not isinstance(data, dict):
            raise ConfigurationError("settings file must contain a mapping")
        unknown = set(data) - known
        if unknown:
            raise ConfigurationError(f"Unknown settings: {', '.join(sorted(unknown))}")
        values.update(data)

    environ = os.environ if env is None else env
    for name, var in _ENV_OVERRIDES.items():
        if environ.get(var):
            values[name] = environ[var]
    if environ.get(_ENV_VAR_NAME):
        values["hasher"] = environ[_ENV_VAR_NAME]

    for name, value in overrides.items():
        if name not in known:
            raise ConfigurationError(f"Unknown setting: {name}")
        if value is not None:
            values[name] = value

    try:
        coerced = {name: _coerce(name, value) for name, value in values.items()}
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"Invalid setting value: {exc}") from exc

    settings = replace(RLNSettings(), **coerced)
    settings.validate()
    return settings
