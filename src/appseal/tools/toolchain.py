from __future__ import annotations

from dataclasses import dataclass

from appseal.tools.codesign import Codesign
from appseal.tools.diskimage import DiskImageTool
from appseal.tools.keychain import Keychain
from appseal.tools.notarytool import NotaryTool, Stapler
from appseal.tools.runner import CommandRunner


@dataclass
class Toolchain:
    """The external tools one pipeline run talks to."""

    keychain: Keychain
    codesign: Codesign
    diskimage: DiskImageTool
    notary: NotaryTool
    stapler: Stapler

    @classmethod
    def system(cls, runner: CommandRunner | None = None) -> Toolchain:
        runner = runner or CommandRunner()
        return cls(
            keychain=Keychain(runner),
            codesign=Codesign(runner),
            diskimage=DiskImageTool(runner),
            notary=NotaryTool(runner),
            stapler=Stapler(runner),
        )
