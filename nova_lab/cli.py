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

"""
cli.py - Command line entry point for the NOVA lab.

Subcommands:
    start      Deploy tiers 0..N, warming up the model and image in the background
    status     Show node, host service and Helm release health
    registry   Manage the local mirror registry (start, stop, delete)

Examples:
    # Full deployment with the default model
    nova-lab start

    # Infrastructure only, CPU mode, single node
    nova-lab start --tier 1 --cpu-mode --nodes 1

    # Check what is running
    nova-lab status

Environment Variables:
    All settings can be overridden via NOVA_* environment variables, for
    example NOVA_NODES, NOVA_MODEL, NOVA_MODELS_DIR, NOVA_COPY_MAX_ATTEMPTS.
"""

from __future__ import annotations

import logging
import sys

import typer
from rich.console import Console

from nova_lab.commands import registry_cmd, start_cmd, status_cmd

app = typer.Typer(
    help="Deploy and inspect the NOVA local Kubernetes lab.",
    no_args_is_help=True,
)


@app.callback()
def _main_callback() -> None:
    """Initialize logging for all subcommands."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%H:%M:%S",
    )


app.command("start")(start_cmd.start)
app.command("status")(status_cmd.status)
app.add_typer(registry_cmd.app, name="registry")


def main() -> None:
    try:
        app()
    except Exception as e:
        Console(stderr=True).print(f"[red]❌ {e}[/red]")
        sys.exit(1)


if __name__ == "__main__":
    main()
