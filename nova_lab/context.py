# /*
# Copyright 2026 The NOVA Authors.
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
# */

"""Explicit per-run context handed to every component constructor."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from rich.console import Console

from nova_lab import ThreadAwareConsole
from nova_lab.config import LabSettings

LOGGER_NAME = "nova_lab"


@dataclass
class RunContext:
    """Console, logger, and settings for one deployment run.

    Attributes:
        settings: Configuration for the run.
        console: Rich console proxy used for human-facing progress.
        logger: Logger used for diagnostic detail.
    """

    settings: LabSettings = field(default_factory=LabSettings)
    console: ThreadAwareConsole = field(default_factory=lambda: ThreadAwareConsole(Console(stderr=True)))
    logger: logging.Logger = field(default_factory=lambda: logging.getLogger(LOGGER_NAME))

    def child_logger(self, suffix: str) -> logging.Logger:
        return self.logger.getChild(suffix)
