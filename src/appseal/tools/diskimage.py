"""Adapter over `ditto`, `hdiutil` and `open`."""

from __future__ import annotations

import shutil
from pathlib import Path

from appseal.constants import DITTO, HDIUTIL, OPEN
from appseal.tools.runner import CommandRunner, diagnostic


class DiskImageTool:
    def __init__(self, runner: CommandRunner | None = None):
        self.runner = runner or CommandRunner()

    def copy(self, src: Path, dst: Path) -> tuple[bool, str]:
        """Copy a bundle preserving resource forks, xattrs, ACLs and symlinks."""
        if dst.exists():
            shutil.rmtree(dst)
        dst.parent.mkdir(parents=True, exist_ok=True)
        proc = self.runner.run([DITTO, "--rsrc", "--extattr", "--acl", src, dst])
        return proc.returncode == 0, diagnostic(proc)

    def create(self, volume_name: str, source: Path, image: Path) -> tuple[bool, str]:
        proc = self.runner.run(
            [HDIUTIL, "create", "-volname", volume_name, "-srcfolder", source, "-ov", "-format", "UDZO", image]
        )
        return proc.returncode == 0, diagnostic(proc)

    def open(self, path: Path) -> None:
        self.runner.run([OPEN, path])
