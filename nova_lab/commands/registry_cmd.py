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

"""Registry subcommands (start, stop, delete)."""

from __future__ import annotations

import typer

from nova_lab.context import RunContext
from nova_lab.registry import MirrorRegistry

app = typer.Typer(help="Manage the local mirror registry.")


@app.command("start")
def start() -> None:
    """Start the mirror registry container."""
    MirrorRegistry(RunContext()).start()


@app.command("stop")
def stop() -> None:
    """Stop the mirror registry container."""
    MirrorRegistry(RunContext()).stop()


@app.command("delete")
def delete() -> None:
    """Remove the mirror registry container."""
    MirrorRegistry(RunContext()).delete()
