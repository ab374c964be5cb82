from __future__ import annotations

import asyncio
import codecs
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Sequence

from engine.errors import ExternalToolFailure, LaunchFailure, TimeoutFailure

_READ_CHUNK_BYTES = 4096
_KILL_WAIT_SECONDS = 5.0
_DEBUG_ENGINE = os.getenv("SUPERTONIC_DEBUG", "0").strip() == "1"

OutputCallback = Callable[[str, str], None]


def _debug(msg: str) -> None:
    if _DEBUG_ENGINE:
        print(f"[engine] {msg}", flush=True)


@dataclass
class ProcessOutcome:
    returncode: int
    stdout: str
    stderr: str


class _StreamCapture:
    def __init__(self, name: str, on_output: OutputCallback | None) -> None:
        self.name = name
        self._on_output = on_output
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._parts: list[str] = []

    def feed(self, data: bytes, final: bool = False) -> None:
        text = self._decoder.decode(data, final=final)
        if not text:
            return
        self._parts.append(text)
        _debug(f"{self.name.upper()}: {text.rstrip()}")
        if self._on_output is not None:
            self._on_output(self.name, text)

    @property
    def text(self) -> str:
        return "".join(self._parts)


async def _pump(stream: asyncio.StreamReader | None, capture: _StreamCapture) -> None:
    if stream is None:
        return
    while True:
        chunk = await stream.read(_READ_CHUNK_BYTES)
        if not chunk:
            break
        capture.feed(chunk)
    capture.feed(b"", final=True)


async def _communicate(
    proc: asyncio.subprocess.Process,
    out: _StreamCapture,
    err: _StreamCapture,
) -> int:
    await asyncio.gather(_pump(proc.stdout, out), _pump(proc.stderr, err))
    return await proc.wait()


async def _kill(proc: asyncio.subprocess.Process) -> None:
    if proc.returncode is not None:
        return
    try:
        proc.kill()
    except ProcessLookupError:
        return
    try:
        await asyncio.wait_for(proc.wait(), timeout=_KILL_WAIT_SECONDS)
    except asyncio.TimeoutError:
        _debug(f"pid={proc.pid} did not exit after kill")


async def run_engine(
    argv: Sequence[str],
    cwd: Path | str,
    timeout: float | None = None,
    on_started: Callable[[int], None] | None = None,
    on_output: OutputCallback | None = None,
) -> ProcessOutcome:
    """Run one engine process to completion and capture its output.

    Raises LaunchFailure when the process cannot be spawned,
    ExternalToolFailure on a non-zero exit and TimeoutFailure when
    *timeout* elapses. Cancelling the caller kills the child.
    """
    if not argv:
        raise ValueError("argv must not be empty")
    program = str(argv[0])
    _debug(f"spawn {program} args={list(argv[1:])} cwd={cwd}")
    try:
        proc = await asyncio.create_subprocess_exec(
            *[str(a) for a in argv],
            cwd=str(cwd),
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError as exc:
        print(f"[engine] failed to start {program}: {exc}", flush=True)
        raise LaunchFailure(program, exc) from exc

    _debug(f"started pid={proc.pid}")
    out = _StreamCapture("stdout", on_output)
    err = _StreamCapture("stderr", on_output)
    try:
        if on_started is not None:
            on_started(proc.pid)
        returncode = await asyncio.wait_for(_communicate(proc, out, err), timeout)
    except asyncio.TimeoutError:
        await _kill(proc)
        print(f"[engine] pid={proc.pid} timed out after {timeout:g}s, killed", flush=True)
        raise TimeoutFailure(float(timeout or 0), out.text, err.text) from None
    except asyncio.CancelledError:
        await _kill(proc)
        _debug(f"pid={proc.pid} canceled, killed")
        raise
    except BaseException:
        # A failing callback must not leave the engine running.
        await _kill(proc)
        raise

    if returncode != 0:
        print(f"[engine] process exited with code {returncode}", flush=True)
        raise ExternalToolFailure(returncode, out.text, err.text)
    return ProcessOutcome(returncode=returncode, stdout=out.text, stderr=err.text)
