from __future__ import annotations
from .schemas import Config
from pathlib import Path

try:
    import tomllib  # py311+
except ModuleNotFoundError:  # pragma: no cover
    import tomli as tomllib  # py<=310

def load_config(path: str | Path) -> Config:
    """
    Parse and validate a TOML run config.

    Raises pydantic.ValidationError when a required cut is missing or out of
    range; nothing has been processed at that point.
    """
    p = Path(path)
    data = tomllib.loads(p.read_text())
    return Config(**data)

def snapshot_config_toml(path: str | Path) -> str:
    """Return the raw TOML text for embedding in HDF5 metadata."""
    return Path(path).read_text()
