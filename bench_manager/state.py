# /*
# Copyright 2026 The Bench Manager Authors.
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

"""PID files for the background benchmark and port-forward processes."""

from __future__ import annotations

from pathlib import Path

import psutil

from bench_manager import logger


class PidFile:
    """A file holding the PID of a detached process started by this tool.

    Args:
        path: Location of the PID file.
    """

    def __init__(self, path: Path):
        self.path = path

    def __repr__(self) -> str:
        return f"PidFile({str(self.path)!r})"

    def exists(self) -> bool:
        return self.path.is_file()

    def write(self, pid: int) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(f"{pid}\n")

    def read(self) -> int | None:
        """Return the recorded PID, or None if the file is missing or garbled."""
        try:
            return int(self.path.read_text().strip())
        except (OSError, ValueError):
            return None

    def remove(self) -> None:
        self.path.unlink(missing_ok=True)

    def is_running(self) -> bool:
        """Return True if the recorded process is alive and not a zombie."""
        pid = self.read()
        if pid is None or not psutil.pid_exists(pid):
            return False
        try:
            return psutil.Process(pid).status() != psutil.STATUS_ZOMBIE
        except psutil.NoSuchProcess:
            return False

    def terminate(self) -> bool:
        """Send SIGTERM to the recorded process and remove the file.

        Returns:
            True if a signal was delivered.
        """
        pid = self.read()
        delivered = False
        if pid is not None:
            try:
                psutil.Process(pid).terminate()
                delivered = True
            except psutil.NoSuchProcess:
                logger.info("Process %d from %s already exited", pid, self.path.name)
            except psutil.AccessDenied:
                logger.warning("No permission to stop process %d from %s", pid, self.path.name)
        self.remove()
        return delivered
