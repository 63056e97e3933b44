"""
Project configuration for slurmjobs.

Settings are layered, later layers winning:
1. DEFAULT_CONFIG
2. The project file, .slurmjobs/config.yaml (or SLURMJOBS_CONFIG)
3. SLURMJOBS_* environment variables
4. Arguments passed explicitly to functions or on the command line

Environment Variables:
    SLURMJOBS_CONFIG: Path to the config file
    SLURMJOBS_PARTITION, SLURMJOBS_MEMORY, SLURMJOBS_CORES, SLURMJOBS_TC,
    SLURMJOBS_LOGDIR, SLURMJOBS_EMAIL: Defaults for generated job scripts
    SLURMJOBS_PYTHON: Interpreter running the companion of loop jobs
    SLURMJOBS_UI: CLI UI mode (plain, rich, auto)
"""

import copy
import os
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

import yaml

from slurmjobs.errors import AlreadyExistsError, ValidationError


DEFAULT_CONFIG = {
    # Options of generated job scripts; see slurmjobs.generate.JobScriptConfig
    "job_defaults": {
        "partition": "shared",
        "memory": "10G",
        "cores": 1,
        "time_limit": "1-00:00:00",
        "email": "ALL",
        "logdir": "logs",
        "tc": 20,
        "command": 'python -c "import platform; print(platform.platform())"',
    },

    # Environment modules loaded at the top of every job body
    "modules": [],

    # Interpreter used to run the companion script of loop jobs
    "python_command": "python",

    # Partition used by report commands (None means all partitions)
    "report": {
        "partition": None,
    },

    "ui": {
        "mode": "plain",
    },
}

# Top-level keys whose value must be a mapping
_SECTIONS = ("job_defaults", "report", "ui")

CONFIG_DIRNAME = ".slurmjobs"
CONFIG_FILENAME = "config.yaml"

# Environment variable -> (config key, converter); SLURMJOBS_CONFIG selects the file
ENV_VAR_MAP: Dict[str, Optional[Tuple[str, Callable[[str], Any]]]] = {
    "SLURMJOBS_CONFIG": None,
    "SLURMJOBS_PARTITION": ("job_defaults.partition", str),
    "SLURMJOBS_MEMORY": ("job_defaults.memory", str),
    "SLURMJOBS_CORES": ("job_defaults.cores", int),
    "SLURMJOBS_TC": ("job_defaults.tc", int),
    "SLURMJOBS_LOGDIR": ("job_defaults.logdir", str),
    "SLURMJOBS_EMAIL": ("job_defaults.email", str),
    "SLURMJOBS_PYTHON": ("python_command", str),
    "SLURMJOBS_UI": ("ui.mode", str),
}


class Config:
    """
    Layered slurmjobs settings for one project.

    Attributes:
        project_root: Directory holding .slurmjobs/.
        config_path: Config file in use (it need not exist).

    Example:
        >>> config = Config(project_root="/data/project")
        >>> config.get("job_defaults.partition")
        'shared'
    """

    def __init__(
        self,
        project_root: Union[str, Path],
        config_path: Optional[Union[str, Path]] = None,
    ):
        self.project_root = Path(project_root)
        explicit = config_path or os.environ.get("SLURMJOBS_CONFIG")
        self.config_path = (
            Path(explicit) if explicit
            else self.project_root / CONFIG_DIRNAME / CONFIG_FILENAME
        )

        settings = merge_settings(DEFAULT_CONFIG, self._read_file())
        for env_var, target in ENV_VAR_MAP.items():
            raw = os.environ.get(env_var)
            if target is None or raw is None:
                continue
            key, convert = target
            try:
                value = convert(raw)
            except ValueError:
                raise ValidationError(
                    f"Environment variable {env_var}={raw!r} is not a valid {convert.__name__}"
                ) from None
            assign(settings, key, value)
        self._config = settings

    def _read_file(self) -> Dict[str, Any]:
        if not self.config_path.exists():
            return {}
        with open(self.config_path, "r") as f:
            data = yaml.safe_load(f)
        if data is None:
            return {}

        if not isinstance(data, dict):
            raise ValidationError(f"{self.config_path} should contain a mapping of settings")
        unknown = sorted(set(data) - set(DEFAULT_CONFIG))
        if unknown:
            raise ValidationError(
                f"Unknown setting(s) in {self.config_path}: {', '.join(map(str, unknown))}"
            )
        for section in _SECTIONS:
            if section in data and not isinstance(data[section], dict):
                raise ValidationError(
                    f"'{section}' in {self.config_path} should be a mapping"
                )
        return data

    def get(self, key: str, default: Any = None) -> Any:
        """
        Look up a setting by dot-separated key.

        Example:
            >>> config.get("job_defaults.memory")
            '10G'
            >>> config.get("job_defaults.gpus", 0)
            0
        """
        return lookup(self._config, key, default)

    def get_job_defaults(self) -> Dict[str, Any]:
        """Default options for generated job scripts (a copy)."""
        return dict(self.get("job_defaults", DEFAULT_CONFIG["job_defaults"]))

    def get_modules(self) -> List[str]:
        modules = self.get("modules") or []
        if isinstance(modules, str):
            return [modules]
        return [str(m) for m in modules]

    def as_dict(self) -> Dict[str, Any]:
        return copy.deepcopy(self._config)

    def save(self, path: Optional[Union[str, Path]] = None) -> Path:
        """Write the effective settings as YAML (to config_path by default)."""
        target = Path(path) if path else self.config_path
        _write_yaml(target, self._config)
        return target

    def __repr__(self) -> str:
        return f"Config(project_root={self.project_root}, config_path={self.config_path})"


def init_config(
    project_root: Union[str, Path],
    overwrite: bool = False,
    **settings: Any,
) -> Path:
    """
    Write a fresh .slurmjobs/config.yaml under ``project_root``.

    Keyword arguments override DEFAULT_CONFIG; mappings such as
    ``job_defaults={"memory": "4G"}`` are merged key by key.

    Raises:
        AlreadyExistsError: If the file exists and overwrite is False.
    """
    path = Path(project_root) / CONFIG_DIRNAME / CONFIG_FILENAME
    if path.exists() and not overwrite:
        raise AlreadyExistsError(
            f"Config file already exists: {path}. Use overwrite=True to replace it."
        )

    _write_yaml(path, merge_settings(DEFAULT_CONFIG, settings))
    return path


def _write_yaml(path: Path, data: Dict[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w") as f:
        yaml.safe_dump(data, f, default_flow_style=False, sort_keys=False)


def merge_settings(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """
    Merge ``override`` into a deep copy of ``base``.

    Nested mappings merge key by key; any other value replaces the base value.
    Neither argument is modified.
    """
    merged = copy.deepcopy(base)
    for key, value in override.items():
        current = merged.get(key)
        if isinstance(current, dict) and isinstance(value, dict):
            merged[key] = merge_settings(current, value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def lookup(settings: Dict[str, Any], key: str, default: Any = None) -> Any:
    node: Any = settings
    for part in key.split("."):
        if not isinstance(node, dict) or part not in node:
            return default
        node = node[part]
    return node


def assign(settings: Dict[str, Any], key: str, value: Any) -> None:
    *parents, last = key.split(".")
    node = settings
    for part in parents:
        node = node.setdefault(part, {})
    node[last] = value
