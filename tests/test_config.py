# SPDX-License-Identifier: Apache-2.0
# SPDX-FileCopyrightText: 2025 The Linux Foundation
"""
Tests for reading settings from gerrit.config and the environment.
"""

import pytest

from dls_gerrit.config import (
    CONFIG_ENV_VAR,
    ConfigError,
    hostname_from_url,
    load_settings,
    plugin_section,
    resolve_config_path,
)

FULL_CONFIG = """\
[gerrit]
\tbasePath = git
\tcanonicalWebUrl = https://gerrit.example.org/
[plugin "DLS-unverify"]
\tgerrit-bot-username = verify-bot
\tmax-changes = 25
[plugin "DLS-verify-trigger"]
\tpermitted-group = 6a1e70e1a88782771a91808c8af9bbb7a9871389
\tpermitted-group = b3c2d1e0f9a8b7c6d5e4f3a2b1c0d9e8f7a6b5c4
\tproject-prefix = gda/
\tproject-prefix = dls-controls/
[plugin "DLS-verify-trigger-gerrit.example.org"]
\tjenkins-job-url = https://jenkins.example.org/job/gda-verify
\tjenkins-job-token = s3cret
[plugin "DLS-verify-trigger-gerrit-test.example.org"]
\tjenkins-job-url = https://jenkins-test.example.org/job/gda-verify
[plugin "DLS-stream-events"]
\tuser = verify-bot
\tsshkey = /var/lib/dls-gerrit/id_rsa
\tport = 29419
"""


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    for name in ("GERRIT_USERNAME", "GERRIT_PASSWORD", CONFIG_ENV_VAR):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def write_config(tmp_path):
    def write(text):
        path = tmp_path / "gerrit.config"
        path.write_text(text)
        return path

    return write


class TestLoadSettings:
    """Tests for load_settings."""

    def test_full_config(self, write_config):
        settings = load_settings(write_config(FULL_CONFIG))

        assert settings.gerrit_url == "https://gerrit.example.org/"
        assert settings.gerrit_hostname == "gerrit.example.org"
        assert settings.unverify.bot_username == "verify-bot"
        assert settings.unverify.max_changes == 25

    def test_multi_valued_keys(self, write_config):
        trigger = load_settings(write_config(FULL_CONFIG)).verify_trigger

        assert trigger.permitted_groups == [
            "6a1e70e1a88782771a91808c8af9bbb7a9871389",
            "b3c2d1e0f9a8b7c6d5e4f3a2b1c0d9e8f7a6b5c4",
        ]
        assert trigger.project_prefixes == ["gda/", "dls-controls/"]

    def test_job_settings_for_own_host(self, write_config):
        trigger = load_settings(write_config(FULL_CONFIG)).verify_trigger

        assert trigger.job_url == "https://jenkins.example.org/job/gda-verify"
        assert trigger.job_token.get_secret_value() == "s3cret"
        assert "s3cret" not in repr(trigger)

    def test_stream_settings(self, write_config):
        stream = load_settings(write_config(FULL_CONFIG)).stream

        assert stream.hostname == "gerrit.example.org"
        assert stream.user == "verify-bot"
        assert stream.port == 29419
        assert stream.sshkey == "/var/lib/dls-gerrit/id_rsa"
        assert stream.keepalive == 60

    def test_defaults(self, write_config):
        settings = load_settings(
            write_config("[gerrit]\n\tcanonicalWebUrl = https://gerrit.example.org/\n")
        )

        assert settings.unverify.bot_username == ""
        assert settings.unverify.max_changes == 40
        assert settings.verify_trigger.permitted_groups == []
        assert settings.verify_trigger.project_prefixes == []
        assert settings.verify_trigger.job_url == ""
        assert settings.stream.sshkey is None
        assert settings.username is None
        assert settings.password is None

    def test_credentials_from_environment(self, write_config, monkeypatch):
        monkeypatch.setenv("GERRIT_USERNAME", "svc")
        monkeypatch.setenv("GERRIT_PASSWORD", "pw")

        settings = load_settings(write_config(FULL_CONFIG))

        assert settings.username == "svc"
        assert settings.password.get_secret_value() == "pw"

    def test_path_from_environment(self, write_config, monkeypatch):
        path = write_config(FULL_CONFIG)
        monkeypatch.setenv(CONFIG_ENV_VAR, str(path))

        assert load_settings().unverify.bot_username == "verify-bot"

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigError, match="not found"):
            load_settings(tmp_path / "missing.config")

    def test_missing_web_url(self, write_config):
        with pytest.raises(ConfigError, match="canonicalWebUrl"):
            load_settings(write_config('[plugin "DLS-unverify"]\n\tmax-changes = 5\n'))

    def test_max_changes_not_a_number(self, write_config):
        text = FULL_CONFIG.replace("max-changes = 25", "max-changes = lots")

        with pytest.raises(ConfigError, match="max-changes"):
            load_settings(write_config(text))

    def test_negative_max_changes(self, write_config):
        text = FULL_CONFIG.replace("max-changes = 25", "max-changes = -1")

        with pytest.raises(ConfigError, match="Invalid configuration"):
            load_settings(write_config(text))


def test_plugin_section():
    assert plugin_section("DLS-unverify") == 'plugin "DLS-unverify"'


def test_hostname_from_url():
    assert hostname_from_url("https://gerrit.example.org:8443/r/") == "gerrit.example.org"
    assert hostname_from_url("") == ""


def test_resolve_config_path_default():
    assert str(resolve_config_path()) == "gerrit.config"
