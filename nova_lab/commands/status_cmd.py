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

"""Status subcommand."""

from __future__ import annotations

from nova_lab.context import RunContext
from nova_lab.status import StatusChecker, render_status


def status() -> None:
    """Show cluster, host service and Helm release health."""
    ctx = RunContext()
    statuses = StatusChecker(ctx).run()
    ctx.console.print(render_status(statuses))
