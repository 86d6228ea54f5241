"""Configuration handling helper functions and default configuration."""
import os
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv
from figcan import Configuration, Extensible  # type:ignore[attr-defined]
from flask import Flask

ENV_PREFIX = "PKL_PROXY_"
ENV_FILE = ".env"

default_config = {
    "TESTING": False,
    "DEBUG": False,
    # where the local proxy listens; ':port' listens on all interfaces
    "LISTEN_ADDRESS": "localhost:9443",
    # seconds in-flight requests get to finish when shutting down
    "SHUTDOWN_GRACE_PERIOD": 5.0,
    # GitHub App options, see pklproxy.auth.github:Config for defaults
    "GITHUB_APP": Extensible({}),
    "MIDDLEWARE": [],
}

load_dotenv()


def configure(app: Flask, additional_config: dict | None = None) -> Flask:
    """Configure a Flask app using Figcan managed configuration object."""
    config = _compose_config(additional_config)
    app.config.update(config)
    return app


def _compose_config(
    additional_config: dict[str, Any] | None = None,
) -> Configuration:
    """Compose configuration object from all available sources."""
    config = Configuration(default_config)
    environ = dict(
        os.environ
    )  # Copy the environment as we're going to change it

    if environ.get(f"{ENV_PREFIX}CONFIG_FILE"):
        config_path = Path(environ[f"{ENV_PREFIX}CONFIG_FILE"])
        with config_path.open() as f:
            config_from_file = yaml.safe_load(f)
        _resolve_key_file(config_from_file, config_path.parent)
        config.apply(config_from_file)
        environ.pop(f"{ENV_PREFIX}CONFIG_FILE")

    if environ.get(f"{ENV_PREFIX}CONFIG_STR"):
        config_from_file = yaml.safe_load(environ[f"{ENV_PREFIX}CONFIG_STR"])
        config.apply(config_from_file)
        environ.pop(f"{ENV_PREFIX}CONFIG_STR")

    # exported to launched processes, never read back
    environ.pop(f"{ENV_PREFIX}LISTEN_ADDRESS", None)
    config.apply_flat(environ, prefix=ENV_PREFIX)

    if additional_config:
        config.apply(additional_config)

    return config


def _resolve_key_file(config_from_file: Any, config_dir: Path) -> None:
    """Make a relative private key path relative to the config file."""
    if not isinstance(config_from_file, dict):
        return
    github_app = config_from_file.get("GITHUB_APP")
    if not isinstance(github_app, dict):
        return
    key_file = github_app.get("private_key_file")
    if key_file and not Path(key_file).is_absolute():
        github_app["private_key_file"] = str(config_dir / key_file)
