import copy
import logging
import os

import yaml

from .cache import default_resync_period_seconds
from .reboot import default_reboot_command


config_filename = "config.yaml"
reboot_methods = ("command", "amt")

defaults = {
    "max_unavailable": 1,
    "resync_period_seconds": default_resync_period_seconds,
    "reboot_method": "command",
    "reboot_command": default_reboot_command,
    "reboot_grace_seconds": 300,
    "verify_boot_id": False,
    "amt_nodes": {},
}


class SettingsError(ValueError):
    pass


def _is_number(value):
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def validate_settings(settings):
    unknown = set(settings) - set(defaults)
    if unknown:
        raise SettingsError(f"Unknown settings: {', '.join(sorted(unknown))}")

    max_unavailable = settings["max_unavailable"]
    if not isinstance(max_unavailable, int) or isinstance(max_unavailable, bool) or max_unavailable < 1:
        raise SettingsError(f"max_unavailable must be an integer >= 1, got {max_unavailable!r}")

    for key in ("resync_period_seconds", "reboot_grace_seconds"):
        if not _is_number(settings[key]) or settings[key] <= 0:
            raise SettingsError(f"{key} must be a positive number, got {settings[key]!r}")

    if settings["reboot_method"] not in reboot_methods:
        raise SettingsError(
            f"reboot_method must be one of {', '.join(reboot_methods)}, got {settings['reboot_method']!r}"
        )

    command = settings["reboot_command"]
    if not isinstance(command, list) or not command or not all(isinstance(part, str) for part in command):
        raise SettingsError("reboot_command must be a non-empty list of strings")

    if not isinstance(settings["verify_boot_id"], bool):
        raise SettingsError("verify_boot_id must be true or false")

    if not isinstance(settings["amt_nodes"], dict):
        raise SettingsError("amt_nodes must be a mapping of node name to AMT credentials")

    return settings


def load_settings(filename=None):
    settings = copy.deepcopy(defaults)

    path = filename or config_filename
    if not os.path.exists(path):
        if filename:
            raise SettingsError(f"Settings file {filename} does not exist")
        logging.debug(f"No {config_filename} found, using default settings")
        return settings

    with open(path, "r") as f:
        try:
            loaded = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise SettingsError(f"Could not parse {path}: {e}") from e

    if loaded is None:
        loaded = {}
    if not isinstance(loaded, dict):
        raise SettingsError(f"{path} must contain a mapping")

    settings.update(loaded)
    return validate_settings(settings)


def apply_overrides(settings, **overrides):
    for key, value in overrides.items():
        if value is not None:
            settings[key] = value
    return validate_settings(settings)
