"""Single choke point for every external command the pipeline runs."""

from __future__ import annotations

import logging
import subprocess
import threading
from collections.abc import Sequence
from pathlib import Path

from appseal.constants import CANCEL_POLL_SECONDS
from appseal.errors import OperationAborted

logger = logging.getLogger(__name__)


def format_cmd(cmd: Sequence[str | Path]) -> str:
    return " ".join(map(str, cmd))


class CommandRunner:
    """Runs a command and returns the CompletedProcess; never raises on a non-zero exit."""

    def run(
        self,
        cmd: Sequence[str | Path],
        *,
        input: str | None = None,
        cwd: Path | None = None,
        cancel: threading.Event | None = None,
    ) -> subprocess.CompletedProcess[str]:
        args = [str(c) for c in cmd]
        logger.debug("$ %s", format_cmd(args))
        try:
            if cancel is None:
                return subprocess.run(
                    args,
                    input=input,
                    text=True,
                    capture_output=True,
                    cwd=str(cwd) if cwd else None,
                    check=False,
                )
            return self._run_cancellable(args, input=input, cwd=cwd, cancel=cancel)
        except FileNotFoundError as e:
            return subprocess.CompletedProcess(args, 127, "", f"{args[0]}: command not found ({e})")

    def _run_cancellable(
        self,
        args: list[str],
        *,
        input: str | None,
        cwd: Path | None,
        cancel: threading.Event,
    ) -> subprocess.CompletedProcess[str]:
        proc = subprocess.Popen(
            args,
            stdin=subprocess.PIPE if input is not None else None,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            cwd=str(cwd) if cwd else None,
        )
        pending_input = input
        try:
            while True:
                if cancel.is_set():
                    raise OperationAborted(f"cancelled: {format_cmd(args)}")
                try:
                    out, err = proc.communicate(input=pending_input, timeout=CANCEL_POLL_SECONDS)
                    return subprocess.CompletedProcess(args, proc.returncode, out, err)
                except subprocess.TimeoutExpired:
                    pending_input = None
        except (OperationAborted, KeyboardInterrupt):
            proc.terminate()
            try:
                proc.wait(timeout=5)
            except subprocess.TimeoutExpired:
                proc.kill()
            raise


def diagnostic(proc: subprocess.CompletedProcess[str]) -> str:
    """Best human-readable text from a finished command (codesign reports on stderr)."""
    text = (proc.stderr or "").strip() or (proc.stdout or "").strip()
    return text or f"exit status {proc.returncode}"
