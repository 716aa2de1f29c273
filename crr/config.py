"""
Coordinator configuration.

Settings come from the ``[coordinator]`` table of a TOML file; command line
options and CRR_* environment variables override individual values.
"""

import tomllib
from pathlib import Path
from typing import Any, Dict, Optional, Union

from pydantic import BaseModel, Field, field_validator

DEFAULT_TASK_NAME = "ClusterRollingRestart"


class CoordinatorConfig(BaseModel):
    """Settings shared by the tick driver and the task lifecycle commands."""

    task_name: str = DEFAULT_TASK_NAME
    interval_minutes: int = Field(default=1, ge=1)
    duration_days_per_node: int = Field(default=1, ge=1)
    powershell: str = "powershell.exe"
    command_timeout: int = Field(default=300, ge=1)  # seconds per PowerShell call
    log_file: Optional[str] = None
    log_level: str = "INFO"
    maintenance_config: Optional[str] = None
    check_storage_jobs: bool = True
    config_path: Optional[str] = None  # where this config was loaded from

    @field_validator("log_level")
    @classmethod
    def normalize_log_level(cls, v: str) -> str:
        v = v.upper()
        if v not in ("TRACE", "DEBUG", "INFO", "SUCCESS", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Invalid log level: {v}")
        return v

    def with_overrides(self, **overrides: Any) -> "CoordinatorConfig":
        """Return a copy with every non-None override applied."""
        values = {key: value for key, value in overrides.items() if value is not None}
        if not values:
            return self
        return CoordinatorConfig(**{**self.model_dump(), **values})


def load_config(path: Optional[Union[str, Path]] = None) -> CoordinatorConfig:
    """
    Load the coordinator configuration.

    Args:
        path: TOML file; when None the defaults are used

    Returns:
        CoordinatorConfig

    Raises:
        FileNotFoundError: if the given file does not exist
        ValueError: if the file contains invalid settings
    """
    if path is None:
        return CoordinatorConfig()

    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(config_path, "rb") as f:
        data: Dict[str, Any] = tomllib.load(f)

    settings = data.get("coordinator", {})
    maintenance = settings.get("maintenance_config")
    if maintenance and not Path(maintenance).is_absolute():
        # Relative to the config file so the scheduled task finds it from any cwd
        settings["maintenance_config"] = str(config_path.parent / maintenance)

    return CoordinatorConfig(**settings, config_path=str(config_path.resolve()))


def create_sample_config(output_path: Union[str, Path]) -> None:
    """Write a sample coordinator configuration file."""
    sample_config = f'''# Rolling restart coordinator configuration.
# The same file must exist at the same path on every cluster node.

[coordinator]
task_name = "{DEFAULT_TASK_NAME}"
interval_minutes = 1            # how often the clustered task fires
duration_days_per_node = 1      # task repetition duration = node count x this
powershell = "powershell.exe"
command_timeout = 300           # seconds per PowerShell call
log_file = "C:\\\\ProgramData\\\\crr\\\\crr.log"
log_level = "INFO"
check_storage_jobs = true
# maintenance_config = "maintenance-windows.toml"
'''

    with open(output_path, "w") as f:
        f.write(sample_config)
