"""
Launch configuration of the RLS host, resolved once per activation.
"""

import dataclasses
import logging
import os
from dataclasses import dataclass
from enum import IntEnum
from pathlib import Path
from typing import Any, Self

import yaml
from sensai.util.string import ToStringMixin

from rlshost.constants import RLS_CONFIG_FILE

log = logging.getLogger(__name__)


class RevealOutputChannelOn(IntEnum):
    """
    Severity threshold at which the output channel is brought to the front.
    Ordered, such that a message of severity `s` reveals the channel iff `threshold <= s`.
    """

    INFO = 1
    WARN = 2
    ERROR = 3
    NEVER = 4

    @classmethod
    def from_string(cls, value: "str | int | RevealOutputChannelOn") -> "RevealOutputChannelOn":
        if isinstance(value, cls):
            return value
        if isinstance(value, bool) or not isinstance(value, (int, str)):
            raise ValueError(f"Invalid value for reveal_output_channel_on: {value!r}")
        if isinstance(value, int):
            try:
                return cls(value)
            except ValueError:
                raise ValueError(f"Invalid value for reveal_output_channel_on: {value!r}")
        try:
            return cls[value.strip().upper()]
        except KeyError:
            raise ValueError(f"Invalid value for reveal_output_channel_on: {value!r}; expected one of {[m.name.lower() for m in cls]}")


@dataclass(frozen=True, kw_only=True)
class RLSConfiguration(ToStringMixin):
    rls_path: str | None = None
    """explicit path to the RLS executable; takes precedence over all other launch strategies"""
    rls_root: str | None = None
    """path to an RLS source checkout, which is built and run via cargo"""
    update_on_startup: bool = False
    log_to_file: bool = False
    show_stderr_in_output_channel: bool = False
    reveal_output_channel_on: RevealOutputChannelOn = RevealOutputChannelOn.NEVER
    channel: str = "nightly"
    rustup_path: str = "rustup"
    component_name: str = "rls-preview"

    def _tostring_includes(self) -> list[str]:
        return ["rls_path", "rls_root", "channel", "update_on_startup"]

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> Self:
        data = dict(data or {})
        known = {f.name for f in dataclasses.fields(cls)}
        for key in list(data.keys()):
            if key not in known:
                log.warning("Ignoring unknown configuration key '%s'", key)
                del data[key]
        for key in ("update_on_startup", "log_to_file", "show_stderr_in_output_channel"):
            if key in data and not isinstance(data[key], bool):
                raise ValueError(f"Configuration key '{key}' must be a boolean, got {data[key]!r}")
        for key in ("rls_path", "rls_root"):
            if data.get(key) is not None:
                data[key] = os.path.expanduser(str(data[key]))
        if "reveal_output_channel_on" in data:
            data["reveal_output_channel_on"] = RevealOutputChannelOn.from_string(data["reveal_output_channel_on"])
        return cls(**data)

    @classmethod
    def load_from_yaml(cls, path: str | Path) -> Self:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
        if data is not None and not isinstance(data, dict):
            raise ValueError(f"Expected a mapping at the top level of {path}")
        return cls.from_dict(data)

    @classmethod
    def load_from_workspace(cls, workspace_root: str | Path) -> Self:
        """
        Loads the configuration from the workspace's configuration file, falling back to defaults
        if the workspace does not have one.

        :param workspace_root: the root directory of the workspace
        :return: the configuration
        """
        config_path = Path(workspace_root) / RLS_CONFIG_FILE
        if not config_path.is_file():
            log.debug("No %s found in %s; using default configuration", RLS_CONFIG_FILE, workspace_root)
            return cls()
        config = cls.load_from_yaml(config_path)
        log.info("Loaded %s from %s", config, config_path)
        return config
