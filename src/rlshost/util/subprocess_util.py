import platform
import subprocess


def subprocess_kwargs() -> dict:
    """
    Returns the platform-specific keyword arguments for subprocess calls, preventing console windows
    from popping up on Windows.
    """
    kwargs = {}
    if platform.system() == "Windows":
        kwargs["creationflags"] = subprocess.CREATE_NO_WINDOW  # type: ignore
    return kwargs
