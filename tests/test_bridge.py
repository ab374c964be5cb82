from __future__ import annotations

import asyncio
import json
import os
import stat
import sys
from pathlib import Path

import pytest

from config import AppConfig
from engine.bridge import GenerationState, TransferBridge
from engine.errors import (
    ExternalToolFailure,
    IOFailure,
    LaunchFailure,
    MissingOutputFailure,
    TimeoutFailure,
    ValidationFailure,
)
from engine.request_builder import GenerationRequest

pytestmark = pytest.mark.skipif(
    sys.platform == "win32", reason="fake engine relies on a shebang script"
)

_ENGINE_TEMPLATE = """#!{python}
import json, os, sys, time
args = sys.argv[1:]
opts = dict(zip(args[0::2], args[1::2]))
save_dir = opts["--save-dir"]
with open(os.path.join(save_dir, "args.json"), "w") as fh:
    json.dump({{"args": args, "cwd": os.getcwd()}}, fh)
{body}
"""

WRITE_WAV = """
print("synthesized", flush=True)
with open(os.path.join(save_dir, "out.wav"), "wb") as fh:
    fh.write(b"RIFF")
"""


def _write_engine(tmp_path: Path, body: str) -> Path:
    engine = tmp_path / "fake_engine"
    engine.write_text(_ENGINE_TEMPLATE.format(python=sys.executable, body=body))
    engine.chmod(engine.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return engine


def _config(tmp_path: Path, binary: Path, **overrides) -> AppConfig:
    working_dir = tmp_path / "rust"
    working_dir.mkdir(exist_ok=True)
    scratch_root = tmp_path / "scratch"
    scratch_root.mkdir(exist_ok=True)
    values = dict(
        binary_path=binary,
        working_dir=working_dir,
        scratch_root=scratch_root,
        timeout_seconds=None,
        keep_scratch=False,
        autoplay=False,
        packaged=False,
        default_voice="M1",
        default_lang="ko",
        default_speed=1.0,
        default_steps=5,
    )
    values.update(overrides)
    return AppConfig(**values)


def _request(**overrides) -> GenerationRequest:
    values = dict(text="Hello", voice="M1", lang="en", speed=1.0, steps=5)
    values.update(overrides)
    return GenerationRequest(**values)


class FakeDialog:
    def __init__(self, answer: Path | None) -> None:
        self.answer = answer
        self.calls: list[str] = []

    async def ask_save_path(self, default_name: str) -> Path | None:
        self.calls.append(default_name)
        return self.answer


@pytest.mark.asyncio
async def test_generate_returns_the_engine_output(tmp_path: Path) -> None:
    cfg = _config(tmp_path, _write_engine(tmp_path, WRITE_WAV))
    bridge = TransferBridge(cfg)
    states: list[GenerationState] = []

    result = await bridge.generate(_request(), on_state=states.append)

    assert result.file_path == result.scratch_dir / "out.wav"
    assert result.file_path.exists()
    assert result.scratch_dir.parent == cfg.scratch_root
    assert result.scratch_dir.name.startswith("supertonic_")
    assert result.stdout.strip() == "synthesized"
    assert result.to_dict() == {"filePath": str(result.file_path), "stdout": result.stdout}
    assert states == [
        GenerationState.BUILDING,
        GenerationState.SPAWNING,
        GenerationState.RUNNING,
        GenerationState.RESOLVING,
        GenerationState.SUCCEEDED,
    ]

    recorded = json.loads((result.scratch_dir / "args.json").read_text())
    assert Path(recorded["cwd"]).resolve() == cfg.working_dir.resolve()
    assert recorded["args"] == [
        "--save-dir",
        str(result.scratch_dir),
        "--text",
        "Hello",
        "--voice-style",
        os.path.join("assets", "voice_styles", "M1.json"),
        "--lang",
        "en",
        "--speed",
        "1",
        "--total-step",
        "5",
    ]
    assert bridge.tracked_scratch_dirs == [result.scratch_dir]


@pytest.mark.asyncio
async def test_concurrent_generations_use_distinct_scratch_dirs(tmp_path: Path) -> None:
    bridge = TransferBridge(_config(tmp_path, _write_engine(tmp_path, WRITE_WAV)))

    first, second = await asyncio.gather(
        bridge.generate(_request(text="one")), bridge.generate(_request(text="two"))
    )

    assert first.scratch_dir != second.scratch_dir
    assert first.file_path != second.file_path


@pytest.mark.asyncio
async def test_generate_nonzero_exit_fails_and_removes_scratch(tmp_path: Path) -> None:
    body = "sys.stderr.write('onnx session failed'); sys.exit(2)"
    cfg = _config(tmp_path, _write_engine(tmp_path, body))
    bridge = TransferBridge(cfg)
    states: list[GenerationState] = []

    with pytest.raises(ExternalToolFailure) as excinfo:
        await bridge.generate(_request(), on_state=states.append)

    assert excinfo.value.returncode == 2
    assert excinfo.value.stderr == "onnx session failed"
    assert states[-1] == GenerationState.FAILED
    assert list(cfg.scratch_root.iterdir()) == []


@pytest.mark.asyncio
async def test_generate_zero_exit_without_wav_is_missing_output(tmp_path: Path) -> None:
    cfg = _config(tmp_path, _write_engine(tmp_path, "print('done')"))
    bridge = TransferBridge(cfg)

    with pytest.raises(MissingOutputFailure) as excinfo:
        await bridge.generate(_request())

    assert excinfo.value.stdout.strip() == "done"
    assert list(cfg.scratch_root.iterdir()) == []


@pytest.mark.asyncio
async def test_generate_keep_scratch_leaves_failed_output(tmp_path: Path) -> None:
    cfg = _config(tmp_path, _write_engine(tmp_path, "print('done')"), keep_scratch=True)
    bridge = TransferBridge(cfg)

    with pytest.raises(MissingOutputFailure):
        await bridge.generate(_request())

    (scratch,) = list(cfg.scratch_root.iterdir())
    assert (scratch / "args.json").exists()


@pytest.mark.asyncio
async def test_generate_missing_binary_is_launch_failure(tmp_path: Path) -> None:
    cfg = _config(tmp_path, tmp_path / "missing_engine")
    bridge = TransferBridge(cfg)

    with pytest.raises(LaunchFailure):
        await bridge.generate(_request())

    assert list(cfg.scratch_root.iterdir()) == []


@pytest.mark.asyncio
async def test_generate_rejects_invalid_request_before_spawning(tmp_path: Path) -> None:
    cfg = _config(tmp_path, _write_engine(tmp_path, WRITE_WAV))
    bridge = TransferBridge(cfg)
    states: list[GenerationState] = []

    with pytest.raises(ValidationFailure) as excinfo:
        await bridge.generate(_request(speed=3.0), on_state=states.append)

    assert excinfo.value.field == "speed"
    assert states == [GenerationState.BUILDING, GenerationState.FAILED]
    assert list(cfg.scratch_root.iterdir()) == []


def _sleeping_engine_body(pid_file: Path, before_sleep: str = "") -> str:
    return (
        f"with open({str(pid_file)!r}, 'w') as fh:\n"
        "    fh.write(str(os.getpid()))\n"
        f"{before_sleep}\n"
        "time.sleep(30)\n"
    )


def assert_engine_gone(pid_file: Path) -> None:
    pid = int(pid_file.read_text())
    with pytest.raises(ProcessLookupError):
        os.kill(pid, 0)


@pytest.mark.asyncio
async def test_generate_timeout_kills_engine_and_removes_scratch(tmp_path: Path) -> None:
    pid_file = tmp_path / "engine.pid"
    cfg = _config(
        tmp_path,
        _write_engine(tmp_path, _sleeping_engine_body(pid_file)),
        timeout_seconds=2.0,
    )
    bridge = TransferBridge(cfg)

    with pytest.raises(TimeoutFailure):
        await bridge.generate(_request())

    assert_engine_gone(pid_file)
    assert list(cfg.scratch_root.iterdir()) == []


@pytest.mark.asyncio
async def test_generate_cancel_kills_engine_and_removes_scratch(tmp_path: Path) -> None:
    pid_file = tmp_path / "engine.pid"
    cfg = _config(tmp_path, _write_engine(tmp_path, _sleeping_engine_body(pid_file)))
    bridge = TransferBridge(cfg)
    states: list[GenerationState] = []

    task = asyncio.create_task(bridge.generate(_request(), on_state=states.append))
    while not pid_file.exists() or not pid_file.read_text():
        await asyncio.sleep(0.01)
    task.cancel()

    with pytest.raises(asyncio.CancelledError):
        await task

    assert states[-1] == GenerationState.CANCELED
    assert_engine_gone(pid_file)
    assert list(cfg.scratch_root.iterdir()) == []


@pytest.mark.asyncio
async def test_generate_failing_output_listener_kills_engine_and_removes_scratch(
    tmp_path: Path,
) -> None:
    pid_file = tmp_path / "engine.pid"
    body = _sleeping_engine_body(pid_file, before_sleep="print('loading', flush=True)")
    cfg = _config(tmp_path, _write_engine(tmp_path, body))
    bridge = TransferBridge(cfg)
    states: list[GenerationState] = []

    def on_output(_name: str, _text: str) -> None:
        raise RuntimeError("log view closed")

    with pytest.raises(RuntimeError, match="log view closed"):
        await bridge.generate(_request(), on_state=states.append, on_output=on_output)

    assert states[-1] == GenerationState.FAILED
    assert list(cfg.scratch_root.iterdir()) == []
    assert_engine_gone(pid_file)


@pytest.mark.asyncio
async def test_generate_unusable_scratch_root_is_io_failure(tmp_path: Path) -> None:
    blocker = tmp_path / "blocker"
    blocker.write_text("not a directory")
    cfg = _config(tmp_path, _write_engine(tmp_path, WRITE_WAV))
    cfg.scratch_root = blocker / "scratch"
    bridge = TransferBridge(cfg)
    states: list[GenerationState] = []

    with pytest.raises(IOFailure) as excinfo:
        await bridge.generate(_request(), on_state=states.append)

    assert excinfo.value.message.startswith("Error creating output directory")
    assert excinfo.value.to_dict()["kind"] == "io"
    assert states == [GenerationState.BUILDING, GenerationState.FAILED]
    assert blocker.is_file()
    assert not (tmp_path / "blocker" / "scratch").exists()


@pytest.mark.asyncio
async def test_release_and_cleanup_remove_tracked_scratch(tmp_path: Path) -> None:
    bridge = TransferBridge(_config(tmp_path, _write_engine(tmp_path, WRITE_WAV)))

    first = await bridge.generate(_request())
    second = await bridge.generate(_request())

    bridge.release(first)
    assert not first.scratch_dir.exists()
    assert second.scratch_dir.exists()

    bridge.cleanup()
    assert not second.scratch_dir.exists()
    assert bridge.tracked_scratch_dirs == []


@pytest.mark.asyncio
async def test_save_copies_to_chosen_destination(tmp_path: Path) -> None:
    source = tmp_path / "out.wav"
    source.write_bytes(b"RIFFdata")
    destination = tmp_path / "saved.wav"
    dialog = FakeDialog(destination)
    bridge = TransferBridge(_config(tmp_path, tmp_path / "engine"), dialog)

    result = await bridge.save(source)

    assert result.success
    assert result.file_path == destination
    assert destination.read_bytes() == b"RIFFdata"
    assert dialog.calls == ["supertonic_output.wav"]
    assert result.to_dict() == {"success": True, "filePath": str(destination)}


@pytest.mark.asyncio
async def test_save_missing_source_skips_dialog(tmp_path: Path) -> None:
    dialog = FakeDialog(tmp_path / "saved.wav")
    bridge = TransferBridge(_config(tmp_path, tmp_path / "engine"), dialog)

    result = await bridge.save(tmp_path / "gone.wav")

    assert result.to_dict() == {"success": False, "error": "Source file not found"}
    assert dialog.calls == []


@pytest.mark.asyncio
async def test_save_dismissed_dialog_is_canceled(tmp_path: Path) -> None:
    source = tmp_path / "out.wav"
    source.write_bytes(b"RIFF")
    bridge = TransferBridge(_config(tmp_path, tmp_path / "engine"), FakeDialog(None))
    before = sorted(p.name for p in tmp_path.iterdir())

    result = await bridge.save(source)

    assert result.to_dict() == {"success": False, "canceled": True}
    assert sorted(p.name for p in tmp_path.iterdir()) == before


@pytest.mark.asyncio
async def test_save_copy_error_is_reported(tmp_path: Path) -> None:
    source = tmp_path / "out.wav"
    source.write_bytes(b"RIFF")
    dialog = FakeDialog(tmp_path / "no_such_dir" / "saved.wav")
    bridge = TransferBridge(_config(tmp_path, tmp_path / "engine"), dialog)

    result = await bridge.save(source)

    assert not result.success
    assert result.error
    assert not result.canceled


class BrokenDialog:
    async def ask_save_path(self, default_name: str) -> Path | None:
        raise IOFailure("Save dialog failed: portal unavailable")


@pytest.mark.asyncio
async def test_save_dialog_failure_is_reported(tmp_path: Path) -> None:
    source = tmp_path / "out.wav"
    source.write_bytes(b"RIFF")
    bridge = TransferBridge(_config(tmp_path, tmp_path / "engine"), BrokenDialog())
    before = sorted(p.name for p in tmp_path.iterdir())

    result = await bridge.save(source)

    assert result.to_dict() == {
        "success": False,
        "error": "Save dialog failed: portal unavailable",
    }
    assert not result.canceled
    assert sorted(p.name for p in tmp_path.iterdir()) == before
