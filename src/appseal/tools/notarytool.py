"""Adapters over `xcrun notarytool` and `xcrun stapler`."""

from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path

from appseal.constants import XCRUN
from appseal.errors import NotarizationError
from appseal.models import NotaryCredentials
from appseal.tools.runner import CommandRunner, diagnostic

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NotaryVerdict:
    submission_id: str
    status: str
    message: str = ""


@contextmanager
def private_key_file(key: str) -> Iterator[Path]:
    """Write the API key to a 0600 temp file for the duration of one call."""
    fd, name = tempfile.mkstemp(suffix=".p8")
    try:
        with os.fdopen(fd, "w") as f:
            f.write(key if key.endswith("\n") else key + "\n")
        yield Path(name)
    finally:
        os.unlink(name)


def parse_json(text: str) -> dict:
    try:
        data = json.loads(text.strip()) if text.strip() else {}
    except json.JSONDecodeError:
        return {}
    return data if isinstance(data, dict) else {}


class NotaryTool:
    def __init__(self, runner: CommandRunner | None = None):
        self.runner = runner or CommandRunner()

    def _auth(self, key_file: Path, credentials: NotaryCredentials) -> list[str | Path]:
        return ["--key", key_file, "--key-id", credentials.key_id, "--issuer", credentials.issuer_id]

    def submit(
        self,
        container: Path,
        credentials: NotaryCredentials,
        *,
        cancel: threading.Event | None = None,
    ) -> NotaryVerdict:
        """Upload and block until the service returns a terminal status."""
        with private_key_file(credentials.key) as key_file:
            proc = self.runner.run(
                [
                    XCRUN,
                    "notarytool",
                    "submit",
                    container,
                    *self._auth(key_file, credentials),
                    "--wait",
                    "--output-format",
                    "json",
                ],
                cancel=cancel,
            )
        result = parse_json(proc.stdout)
        if "id" not in result or "status" not in result:
            # no verdict at all: upload or authentication problem
            raise NotarizationError(f"notarytool submit failed: {diagnostic(proc)}")
        message = result.get("message", "")
        if message:
            logger.info("notarytool: %s", message)
        return NotaryVerdict(submission_id=result["id"], status=result["status"], message=message)

    def log(self, submission_id: str, credentials: NotaryCredentials) -> dict:
        """The developer log for a finished submission; empty when unavailable."""
        with private_key_file(credentials.key) as key_file:
            proc = self.runner.run(
                [XCRUN, "notarytool", "log", submission_id, *self._auth(key_file, credentials)]
            )
        if proc.returncode != 0:
            logger.warning("notarytool log failed for %s: %s", submission_id, diagnostic(proc))
            return {}
        return parse_json(proc.stdout)


class Stapler:
    def __init__(self, runner: CommandRunner | None = None):
        self.runner = runner or CommandRunner()

    def validate(self, container: Path) -> bool:
        return self.runner.run([XCRUN, "stapler", "validate", "-v", container]).returncode == 0

    def staple(self, container: Path) -> tuple[bool, str]:
        proc = self.runner.run([XCRUN, "stapler", "staple", "-v", container])
        return proc.returncode == 0, diagnostic(proc)
