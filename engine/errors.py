from __future__ import annotations


class SynthesisError(Exception):
    """Base class for failures of a single generation request."""

    kind = "error"

    def __init__(self, message: str, stdout: str = "", stderr: str = "") -> None:
        super().__init__(message)
        self.message = message
        self.stdout = stdout
        self.stderr = stderr

    def to_dict(self) -> dict[str, str]:
        payload = {"kind": self.kind, "message": self.message}
        if self.stdout:
            payload["stdout"] = self.stdout
        if self.stderr:
            payload["stderr"] = self.stderr
        return payload


class ValidationFailure(SynthesisError):
    kind = "validation"

    def __init__(self, field: str, message: str) -> None:
        super().__init__(message)
        self.field = field


class LaunchFailure(SynthesisError):
    kind = "launch"

    def __init__(self, program: str, error: OSError) -> None:
        reason = error.strerror or str(error)
        super().__init__(f"Failed to start {program}: {reason}")
        self.program = program
        self.os_error = error


class ExternalToolFailure(SynthesisError):
    kind = "external_tool"

    def __init__(self, returncode: int, stdout: str = "", stderr: str = "") -> None:
        super().__init__(f"Process exited with code {returncode}", stdout, stderr)
        self.returncode = returncode


class TimeoutFailure(SynthesisError):
    kind = "timeout"

    def __init__(self, timeout: float, stdout: str = "", stderr: str = "") -> None:
        super().__init__(f"Process timed out after {timeout:g}s", stdout, stderr)
        self.timeout = timeout


class MissingOutputFailure(SynthesisError):
    kind = "missing_output"

    def __init__(self, stdout: str = "", stderr: str = "") -> None:
        super().__init__("No WAV file generated", stdout, stderr)


class IOFailure(SynthesisError):
    kind = "io"

    def __init__(self, message: str, error: OSError | None = None) -> None:
        if error is not None:
            message = f"{message}: {error.strerror or error}"
        super().__init__(message)
        self.os_error = error
