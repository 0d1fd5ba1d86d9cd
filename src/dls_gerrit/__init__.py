# SPDX-License-Identifier: Apache-2.0
# SPDX-FileCopyrightText: 2025 The Linux Foundation
"""Gerrit helpers that unverify topics and trigger verify jobs."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("dls-gerrit-plugins")
except PackageNotFoundError:
    __version__ = "0.0.0"
