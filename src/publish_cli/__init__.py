"""ens-publish command line runtime."""

from .config import CliConfig, load_config  # noqa: F401

__all__ = [
    "CliConfig",
    "load_config",
]
