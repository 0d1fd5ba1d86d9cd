# SPDX-License-Identifier: Apache-2.0
# SPDX-FileCopyrightText: 2025 The Linux Foundation
"""
Configuration for the dls_gerrit handlers.

Settings live in Gerrit's own ``gerrit.config`` (git-config syntax), in
the plugin sections the handlers have always used:

    [gerrit]
        canonicalWebUrl = https://gerrit.example.org/
    [plugin "DLS-unverify"]
        gerrit-bot-username = verify-bot
        max-changes = 40
    [plugin "DLS-verify-trigger"]
        permitted-group = 0123abcd...
        project-prefix = gda/
    [plugin "DLS-verify-trigger-gerrit.example.org"]
        jenkins-job-url = https://jenkins.example.org/job/verify
        jenkins-job-token = secret
    [plugin "DLS-stream-events"]
        user = verify-bot
        sshkey = /var/lib/dls-gerrit/id_rsa

REST credentials for the service account are taken from the
GERRIT_USERNAME and GERRIT_PASSWORD environment variables.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from urllib.parse import urlparse

from git.config import GitConfigParser
from pydantic import BaseModel, Field, SecretStr, ValidationError

log = logging.getLogger("dls_gerrit.config")

DEFAULT_CONFIG_PATH = "gerrit.config"
CONFIG_ENV_VAR = "DLS_GERRIT_CONFIG"

UNVERIFY_PLUGIN = "DLS-unverify"
VERIFY_TRIGGER_PLUGIN = "DLS-verify-trigger"
STREAM_EVENTS_PLUGIN = "DLS-stream-events"

DEFAULT_MAX_CHANGES = 40


class ConfigError(Exception):
    """Raised when the configuration is missing or invalid."""


def plugin_section(name: str) -> str:
    """Section header for a plugin, as Gerrit writes it."""
    return f'plugin "{name}"'


class UnverifyConfig(BaseModel):
    """Settings of the unverify handlers."""

    bot_username: str = Field(
        "", description="Account the Verified votes are removed as"
    )
    max_changes: int = Field(
        DEFAULT_MAX_CHANGES,
        ge=0,
        description="Topics matching more changes than this are left alone",
    )


class VerifyTriggerConfig(BaseModel):
    """Settings of the verify trigger endpoint for one Gerrit host."""

    permitted_groups: list[str] = Field(default_factory=list)
    project_prefixes: list[str] = Field(default_factory=list)
    job_url: str = ""
    job_token: SecretStr = SecretStr("")


class StreamConfig(BaseModel):
    """SSH connection used to follow ``gerrit stream-events``."""

    hostname: str = ""
    user: str = ""
    port: int = 29418
    sshkey: str | None = None
    keepalive: int = 60
    timeout: float = 30.0


class Settings(BaseModel):
    """Everything read from gerrit.config and the environment."""

    gerrit_url: str
    username: str | None = None
    password: SecretStr | None = None
    unverify: UnverifyConfig = Field(default_factory=UnverifyConfig)
    verify_trigger: VerifyTriggerConfig = Field(
        default_factory=VerifyTriggerConfig
    )
    stream: StreamConfig = Field(default_factory=StreamConfig)

    @property
    def gerrit_hostname(self) -> str:
        return hostname_from_url(self.gerrit_url)


def hostname_from_url(url: str) -> str:
    """Return the hostname of a web URL."""
    return urlparse(url).hostname or ""


def _get_string(
    parser: GitConfigParser, section: str, option: str, default: str = ""
) -> str:
    if not parser.has_option(section, option):
        return default
    return str(parser.get(section, option)).strip()


def _get_list(parser: GitConfigParser, section: str, option: str) -> list[str]:
    if not parser.has_option(section, option):
        return []
    values = parser.get_values(section, option)
    return [str(v).strip() for v in values if str(v).strip()]


def _get_int(
    parser: GitConfigParser, section: str, option: str, default: int
) -> int:
    raw = _get_string(parser, section, option)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ConfigError(
            f"[{section}] {option} must be an integer, got {raw!r}"
        ) from exc


def resolve_config_path(path: str | os.PathLike[str] | None = None) -> Path:
    """Pick the config file from an explicit path, the environment or the default."""
    if path:
        return Path(path)
    return Path(os.getenv(CONFIG_ENV_VAR, DEFAULT_CONFIG_PATH))


def load_settings(path: str | os.PathLike[str] | None = None) -> Settings:
    """
    Read gerrit.config and the environment into a Settings object.

    Args:
        path: Config file. Defaults to $DLS_GERRIT_CONFIG or ./gerrit.config.

    Raises:
        ConfigError: If the file is missing or a value is invalid.
    """
    config_path = resolve_config_path(path)
    if not config_path.is_file():
        raise ConfigError(f"Configuration file not found: {config_path}")

    parser = GitConfigParser(str(config_path), read_only=True)
    parser.read()

    gerrit_url = _get_string(parser, "gerrit", "canonicalWebUrl")
    if not gerrit_url:
        raise ConfigError(f"[gerrit] canonicalWebUrl is not set in {config_path}")
    hostname = hostname_from_url(gerrit_url)

    unverify_section = plugin_section(UNVERIFY_PLUGIN)
    trigger_section = plugin_section(VERIFY_TRIGGER_PLUGIN)
    host_section = plugin_section(f"{VERIFY_TRIGGER_PLUGIN}-{hostname}")
    stream_section = plugin_section(STREAM_EVENTS_PLUGIN)

    password = os.getenv("GERRIT_PASSWORD", "").strip()
    try:
        settings = Settings(
            gerrit_url=gerrit_url,
            username=os.getenv("GERRIT_USERNAME", "").strip() or None,
            password=SecretStr(password) if password else None,
            unverify=UnverifyConfig(
                bot_username=_get_string(
                    parser, unverify_section, "gerrit-bot-username"
                ),
                max_changes=_get_int(
                    parser, unverify_section, "max-changes", DEFAULT_MAX_CHANGES
                ),
            ),
            verify_trigger=VerifyTriggerConfig(
                permitted_groups=_get_list(
                    parser, trigger_section, "permitted-group"
                ),
                project_prefixes=_get_list(
                    parser, trigger_section, "project-prefix"
                ),
                job_url=_get_string(parser, host_section, "jenkins-job-url"),
                job_token=SecretStr(
                    _get_string(parser, host_section, "jenkins-job-token")
                ),
            ),
            stream=StreamConfig(
                hostname=_get_string(parser, stream_section, "server", hostname),
                user=_get_string(parser, stream_section, "user"),
                port=_get_int(parser, stream_section, "port", 29418),
                sshkey=_get_string(parser, stream_section, "sshkey") or None,
                keepalive=_get_int(parser, stream_section, "keepalive", 60),
            ),
        )
    except ValidationError as exc:
        raise ConfigError(f"Invalid configuration in {config_path}: {exc}") from exc

    log.debug(
        "Loaded settings from %s: gerrit=%s, bot=%s, max_changes=%d, "
        "permitted_groups=%d, project_prefixes=%d",
        config_path,
        settings.gerrit_url,
        settings.unverify.bot_username or "(unset)",
        settings.unverify.max_changes,
        len(settings.verify_trigger.permitted_groups),
        len(settings.verify_trigger.project_prefixes),
    )
    return settings


__all__ = [
    "ConfigError",
    "Settings",
    "StreamConfig",
    "UnverifyConfig",
    "VerifyTriggerConfig",
    "hostname_from_url",
    "load_settings",
    "plugin_section",
]
