from __future__ import annotations

"""Hand scanned artifacts to external tools.

The core never renders anything itself.  It talks to two collaborators:

* a :class:`ProcessRunner` – ``run(stdin, command, cwd)`` returning stdout
  bytes, stderr text and the exit code (diagram tools);
* a :class:`RemoteExecutor` – ``exec(command)`` returning captured output
  (command blocks, e.g. a throw-away VM reached over SSH).

:class:`ArtifactRenderer` maps each :class:`~ollabranch.artifacts.Artifact`
kind to the right collaborator call.
"""

import subprocess
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Protocol, Sequence, runtime_checkable

from loguru import logger
from pydantic import BaseModel, ConfigDict

from ollabranch.artifacts import COMMAND_END, COMMAND_START, Artifact, ArtifactKind
from ollabranch.errors import RenderError
from ollabranch.settings import settings


class ProcessResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    stdout: bytes = b""
    stderr: str = ""
    exit_code: int = 0


@runtime_checkable
class ProcessRunner(Protocol):
    def run(self, stdin: bytes, command: Sequence[str], cwd: Optional[Path] = None) -> ProcessResult:
        ...


@runtime_checkable
class RemoteExecutor(Protocol):
    def exec(self, command: str) -> str:
        ...


class SubprocessRunner:
    """Default :class:`ProcessRunner` backed by :func:`subprocess.run`."""

    def __init__(self, timeout: Optional[float] = None) -> None:
        self.timeout = timeout or settings.RENDER_TIMEOUT

    def run(self, stdin: bytes, command: Sequence[str], cwd: Optional[Path] = None) -> ProcessResult:
        logger.debug(f"[RENDER] exec {' '.join(command)} (cwd={cwd})")
        try:
            done = subprocess.run(
                list(command),
                input=stdin,
                cwd=str(cwd) if cwd else None,
                capture_output=True,
                timeout=self.timeout,
                check=False,
            )
        except FileNotFoundError as exc:
            raise RenderError(f"Tool not found: {command[0]}", data={"command": list(command)}) from exc
        except subprocess.TimeoutExpired as exc:
            raise RenderError(f"{command[0]} timed out after {self.timeout}s", data={"command": list(command)}) from exc
        return ProcessResult(
            stdout=done.stdout,
            stderr=done.stderr.decode("utf-8", errors="replace"),
            exit_code=done.returncode,
        )


def execute_marked(text: str, executor: RemoteExecutor) -> str:
    """Run every ``$@ cmd @$`` in *text* through *executor*.

    Returns the text with the command markers removed, followed by the
    collected outputs.  An unterminated ``$@`` is left in place.
    """
    rest = text
    outputs: List[str] = []
    start = rest.find(COMMAND_START)
    while start >= 0:
        end = rest.find(COMMAND_END, start + len(COMMAND_START))
        if end < 0:
            break
        command = rest[start + len(COMMAND_START):end].strip()
        if command:
            logger.info(f"[RENDER] remote exec: {command}")
            outputs.append(executor.exec(command))
        rest = rest[:start] + rest[end + len(COMMAND_END):]
        start = rest.find(COMMAND_START)
    return rest.strip() + "\n" + "".join(outputs)


class RenderResult(BaseModel):
    """Outcome of handing one artifact to its tool."""

    model_config = ConfigDict(frozen=True)

    artifact: Artifact
    ok: bool
    image: Optional[bytes] = None
    text: Optional[str] = None
    error: Optional[Dict[str, Any]] = None


DEFAULT_COMMANDS: Dict[ArtifactKind, List[str]] = {
    ArtifactKind.UML: ["plantuml", "-tpng", "-pipe"],
    ArtifactKind.SVG: ["convert", "svg:-", "png:-"],
    ArtifactKind.DOT: ["dot", "-Tpng"],
}


class ArtifactRenderer:
    """Dispatch artifacts: diagrams to a process runner, commands to a remote executor."""

    def __init__(
        self,
        runner: Optional[ProcessRunner] = None,
        executor: Optional[RemoteExecutor] = None,
        *,
        commands: Optional[Mapping[ArtifactKind, Sequence[str]]] = None,
        work_dir: Optional[Path] = None,
    ) -> None:
        self.runner = runner if runner is not None else SubprocessRunner()
        self.executor = executor
        self.commands = {**DEFAULT_COMMANDS, **{k: list(v) for k, v in (commands or {}).items()}}
        self.work_dir = Path(work_dir or settings.WORK_DIR)

    def render(self, artifact: Artifact) -> RenderResult:
        try:
            if artifact.kind is ArtifactKind.COMMAND:
                return self._run_commands(artifact)
            return self._draw(artifact)
        except RenderError as exc:
            logger.error(f"[RENDER] {artifact.kind.value} failed: {exc}")
            return RenderResult(artifact=artifact, ok=False, text=exc.message, error=exc.to_dict())

    def render_all(self, artifacts: Sequence[Artifact], max_workers: int = 4) -> List[RenderResult]:
        """Render concurrently; results keep the order of *artifacts*."""
        if not artifacts:
            return []
        with ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="render") as pool:
            return list(pool.map(self.render, artifacts))

    # ------------------------------------------------------------------
    def _draw(self, artifact: Artifact) -> RenderResult:
        command = self.commands[artifact.kind]
        self.work_dir.mkdir(parents=True, exist_ok=True)
        result = self.runner.run(artifact.text.encode("utf-8"), command, self.work_dir)
        if result.exit_code != 0:
            logger.warning(f"[RENDER] {command[0]} exited with {result.exit_code}: {result.stderr.strip()}")
            return RenderResult(
                artifact=artifact,
                ok=False,
                text=result.stderr,
                error={"code": "RENDER_ERROR", "exit_code": result.exit_code},
            )
        return RenderResult(artifact=artifact, ok=True, image=result.stdout, text=result.stderr or None)

    def _run_commands(self, artifact: Artifact) -> RenderResult:
        if self.executor is None:
            raise RenderError("No remote executor configured for command blocks")
        return RenderResult(artifact=artifact, ok=True, text=execute_marked(artifact.text, self.executor))
