from __future__ import annotations

from pathlib import Path

from engine.errors import IOFailure, MissingOutputFailure

AUDIO_EXTENSION = ".wav"


def list_audio_files(directory: Path, extension: str = AUDIO_EXTENSION) -> list[Path]:
    suffix = extension.lower()
    try:
        entries = list(directory.iterdir())
    except OSError as exc:
        raise IOFailure("Error reading output directory", exc) from exc
    matches = [p for p in entries if p.suffix.lower() == suffix and p.is_file()]
    return sorted(matches, key=lambda p: p.name)


def find_audio_output(
    directory: Path,
    stdout: str = "",
    stderr: str = "",
    extension: str = AUDIO_EXTENSION,
) -> Path:
    """Return the audio file the engine wrote into *directory*.

    Several candidates resolve to the first by name.
    """
    matches = list_audio_files(directory, extension)
    if not matches:
        raise MissingOutputFailure(stdout, stderr)
    if len(matches) > 1:
        names = ", ".join(p.name for p in matches)
        print(f"[engine] {len(matches)} outputs in {directory}, using {matches[0].name} ({names})", flush=True)
    return matches[0]
