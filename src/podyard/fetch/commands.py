"""Subprocess helpers that record every external command in the run summary."""
from __future__ import annotations

import logging
import os
import subprocess
import time
from pathlib import Path
from typing import Mapping, Sequence

from podyard.install.run_summary import InstallSummary

logger = logging.getLogger("podyard.fetch")

__all__ = ["CommandRunner", "hint_for_command"]

BASE_ENV = {
    "GIT_TERMINAL_PROMPT": "0",
    "GIT_ASKPASS": "echo",
}


def hint_for_command(cmd: Sequence[str], exit_code: int | None, stderr: str | None) -> str | None:
    joined = " ".join(map(str, cmd)).lower()
    stderr_lower = (stderr or "").lower()
    if "git" in joined:
        if exit_code is None:
            return "The remote did not answer in time; retry or enable aggressive_cache to reuse cached sources."
        if "could not resolve host" in stderr_lower or "connection" in stderr_lower:
            return "Check connectivity; cached sources are reused when aggressive_cache is enabled."
        if "not found" in stderr_lower or "did not match" in stderr_lower:
            return "Verify the tag, branch or commit named in the package source."
        return "Verify git remotes and credentials for the package source."
    return None


class CommandRunner:
    """Run commands, logging a :class:`CommandRecord` for each invocation."""

    def __init__(self, summary: InstallSummary | None = None, *, env: Mapping[str, str] | None = None) -> None:
        self.summary = summary if summary is not None else InstallSummary()
        self._env = dict(os.environ)
        self._env.update(BASE_ENV)
        if env:
            self._env.update(env)

    def run(
        self,
        cmd: Sequence[str],
        *,
        cwd: Path | None = None,
        timeout: float | None = None,
    ) -> subprocess.CompletedProcess[str]:
        cmd_list = [str(part) for part in cmd]
        record = self.summary.begin_command(cmd_list, cwd=str(cwd) if cwd else None)
        logger.debug("Executing command: %s", " ".join(cmd_list))
        start = time.perf_counter()
        try:
            result = subprocess.run(
                cmd_list,
                cwd=cwd,
                env=self._env,
                timeout=timeout,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
            )
        except subprocess.TimeoutExpired as exc:
            duration = time.perf_counter() - start
            hint = hint_for_command(cmd_list, None, str(exc))
            record.finalize(exit_code=None, stderr=str(exc), duration=duration, hint=hint)
            logger.error("Command timed out: %s", " ".join(cmd_list))
            raise RuntimeError(f"Command '{' '.join(cmd_list)}' timed out after {timeout}s") from exc

        duration = time.perf_counter() - start
        stderr_text = result.stderr or ""
        hint = hint_for_command(cmd_list, result.returncode, stderr_text)
        record.finalize(exit_code=result.returncode, stderr=stderr_text, duration=duration, hint=hint)
        if hint and result.returncode != 0:
            logger.info("Remediation hint: %s", hint)
        if result.returncode != 0:
            raise subprocess.CalledProcessError(
                result.returncode,
                cmd_list,
                output=result.stdout,
                stderr=stderr_text,
            )
        return result

    def retry(
        self,
        cmd: Sequence[str],
        *,
        attempts: int = 3,
        delay: float = 0.8,
        cwd: Path | None = None,
        timeout: float | None = None,
    ) -> subprocess.CompletedProcess[str]:
        last: Exception | None = None
        for attempt in range(1, attempts + 1):
            try:
                return self.run(cmd, cwd=cwd, timeout=timeout)
            except (subprocess.CalledProcessError, RuntimeError) as exc:
                last = exc
                if attempt < attempts:
                    logger.debug("Attempt %d/%d failed for %s", attempt, attempts, cmd[0])
                    time.sleep(delay * attempt)
        assert last is not None
        raise last
