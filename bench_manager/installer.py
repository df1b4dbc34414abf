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

"""AIBrix checkout, lambda-cloud install scripts, and nvkind installation."""

from __future__ import annotations

import shutil
import tarfile
from pathlib import Path

import requests
import sh
from rich.panel import Panel

from bench_manager import console, logger
from bench_manager.config import AibrixConfig
from bench_manager.constants import REL_INSTALL_SCRIPT, REL_VERIFY_SCRIPT, dep_value
from bench_manager.utils import command_exists, prepend_to_path

NVKIND_ARCHIVE_MEMBER = dep_value("nvkind", "archive_member", default="nvkind-linux-amd64")
BASHRC_PATH_LINE = 'export PATH=$HOME/.local/bin:$PATH'


def sync_repository(cfg: AibrixConfig) -> None:
    """Clone the AIBrix repository, or pull if it is already checked out.

    Args:
        cfg: AIBrix configuration with the repository URL and work dir.
    """
    repo = cfg.repo_path
    if not repo.exists():
        console.print("[yellow]\u2139\ufe0f  Cloning AIBrix repository...[/yellow]")
        cfg.work_dir.mkdir(parents=True, exist_ok=True)
        sh.git("clone", cfg.aibrix_repo_url, str(repo))
    else:
        console.print("[yellow]\u2139\ufe0f  AIBrix repository already exists, updating...[/yellow]")
        sh.git("pull", _cwd=str(repo))


def _persist_local_bin(bashrc: Path) -> None:
    """Append the ~/.local/bin PATH export to *bashrc* once."""
    existing = bashrc.read_text() if bashrc.exists() else ""
    if BASHRC_PATH_LINE in existing:
        return
    with open(bashrc, "a") as f:
        f.write(f"\n{BASHRC_PATH_LINE}\n")


def download_file(url: str, dest: Path, timeout: int = 60) -> None:
    """Stream *url* to *dest*.

    Raises:
        RuntimeError: If the download fails.
    """
    try:
        with requests.get(url, stream=True, timeout=timeout, allow_redirects=True) as response:
            response.raise_for_status()
            with open(dest, "wb") as f:
                for chunk in response.iter_content(chunk_size=1 << 16):
                    f.write(chunk)
    except requests.RequestException as err:
        raise RuntimeError(f"Failed to download {url}: {err}") from err


def extract_binary(archive: Path, member: str, dest: Path) -> None:
    """Extract a single file from a gzipped tarball and make it executable.

    Args:
        archive: Path to the ``.tar.gz`` file.
        member: Name of the file inside the archive.
        dest: Final path of the extracted executable.

    Raises:
        RuntimeError: If the archive is unreadable or lacks *member*.
    """
    try:
        with tarfile.open(archive, "r:gz") as tar:
            source = tar.extractfile(member)
            if source is None:
                raise RuntimeError(f"'{member}' in {archive} is not a regular file")
            with source, open(dest, "wb") as out:
                shutil.copyfileobj(source, out)
    except (tarfile.TarError, KeyError) as err:
        raise RuntimeError(f"Failed to extract {member} from {archive}: {err}") from err
    dest.chmod(0o755)


def ensure_nvkind(cfg: AibrixConfig) -> None:
    """Install the nvkind binary into ``~/.local/bin`` when it is not on PATH.

    Args:
        cfg: AIBrix configuration with the nvkind download URL and bin dir.

    Raises:
        RuntimeError: If nvkind cannot be downloaded or is still not found.
    """
    if command_exists("nvkind"):
        console.print("[green]\u2713 nvkind is already installed[/green]")
        return

    console.print("[yellow]\u2139\ufe0f  nvkind not found. Installing it...[/yellow]")
    cfg.local_bin.mkdir(parents=True, exist_ok=True)
    if prepend_to_path(cfg.local_bin):
        logger.info("Added %s to PATH", cfg.local_bin)
        _persist_local_bin(Path.home() / ".bashrc")

    archive = Path.home() / f"{NVKIND_ARCHIVE_MEMBER}.tar.gz"
    console.print(f"[yellow]\u2139\ufe0f  Downloading {cfg.nvkind_url}...[/yellow]")
    download_file(cfg.nvkind_url, archive)
    extract_binary(archive, NVKIND_ARCHIVE_MEMBER, cfg.local_bin / "nvkind")

    if not command_exists("nvkind"):
        raise RuntimeError("nvkind installation failed. Please check the logs.")
    console.print("[green]\u2705 nvkind installed successfully[/green]")


def install_dependencies(cfg: AibrixConfig) -> None:
    """Check out AIBrix, run its host install script, and make sure nvkind exists.

    Args:
        cfg: AIBrix configuration.

    Raises:
        RuntimeError: If nvkind cannot be installed.
    """
    console.print(Panel.fit("Installing dependencies", style="bold blue"))
    sync_repository(cfg)

    console.print("[yellow]\u2139\ufe0f  Running AIBrix installation script...[/yellow]")
    sh.bash(REL_INSTALL_SCRIPT, _cwd=str(cfg.repo_path))

    ensure_nvkind(cfg)
    try:
        version = str(sh.nvkind("--version")).strip()
        logger.info("nvkind version: %s", version)
    except sh.ErrorReturnCode:
        console.print("[yellow]\u26a0\ufe0f  Failed to check nvkind version, continuing anyway[/yellow]")
    console.print("[green]\u2705 Dependencies installed[/green]")


def verify_installation(cfg: AibrixConfig) -> None:
    """Run the AIBrix host verification script.

    Args:
        cfg: AIBrix configuration.

    Raises:
        RuntimeError: If the AIBrix checkout does not exist.
    """
    console.print(Panel.fit("Verifying installation", style="bold blue"))
    if not cfg.repo_path.is_dir():
        raise RuntimeError(
            f"AIBrix repository not found at {cfg.repo_path}. Please run the install step first."
        )
    sh.bash(REL_VERIFY_SCRIPT, _cwd=str(cfg.repo_path))
    console.print("[green]\u2705 Installation verified[/green]")
