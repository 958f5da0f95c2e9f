"""
Exception hierarchy of the RLS host.
"""


class RlsHostError(Exception):
    """
    Base class of all errors raised by the RLS host.
    """

    def __init__(self, message: str, cause: Exception | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.cause = cause

    def __str__(self) -> str:
        return self.message + (f"; Cause: {self.cause}" if self.cause else "")


class ProbeError(RlsHostError):
    """
    Raised when the Rust sysroot could not be determined by running `rustc --print sysroot`.
    """


class ProbeSpawnError(ProbeError):
    pass


class ProbeExitError(ProbeError):
    def __init__(self, message: str, returncode: int) -> None:
        super().__init__(message)
        self.returncode = returncode


class ProbeEmptyOutputError(ProbeError):
    pass


class RustupError(RlsHostError):
    """
    Raised when a rustup invocation (toolchain or component installation) fails.
    """


class LaunchSpawnError(RlsHostError):
    """
    Raised when the RLS process could not be spawned for a reason other than a missing executable.
    """


class LaunchRejectedError(RlsHostError):
    """
    Raised when no RLS process could be obtained at all. Callers must not retry automatically.
    """


class LogFileError(RlsHostError):
    pass


class LanguageServerTerminatedException(RlsHostError):
    """
    Raised (set on pending requests) when the language server process has terminated unexpectedly.
    """

    def __str__(self) -> str:
        return f"LanguageServerTerminatedException: {super().__str__()}"
