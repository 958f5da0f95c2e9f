"""
Synthesis of the environment the RLS process runs in.
"""

import logging
import os
from collections.abc import Mapping

from rlshost.config import RLSConfiguration
from rlshost.constants import CARGO_BIN_DIR, HOME_FALLBACK, RUST_SRC_PATH_SUFFIX, RUST_SRC_PATH_VAR
from rlshost.editor import EditorSurface
from rlshost.exceptions import ProbeError
from rlshost.sysroot import SysrootProber

log = logging.getLogger(__name__)


class RlsEnvironmentBuilder:
    """
    Builds the environment for the RLS process, synthesising RUST_SRC_PATH (which Racer needs to find the
    standard library sources) from the toolchain's sysroot unless the user has already set it.
    """

    SYSROOT_WARNING = "RLS could not set RUST_SRC_PATH for Racer because it could not read the Rust sysroot."

    def __init__(
        self,
        config: RLSConfiguration,
        editor: EditorSurface,
        prober: SysrootProber | None = None,
        base_env: Mapping[str, str] | None = None,
    ) -> None:
        """
        :param config: the launch configuration
        :param editor: the editor surface to report a failed sysroot query to
        :param prober: the sysroot prober; if None, one is created for the given configuration
        :param base_env: the environment to start from; if None, the environment of the current process is used.
            It is never modified.
        """
        self._config = config
        self._editor = editor
        self._prober = prober or SysrootProber(config)
        self._base_env = base_env

    def build(self) -> dict[str, str]:
        env = dict(os.environ if self._base_env is None else self._base_env)

        if env.get(RUST_SRC_PATH_VAR):
            log.info("Using %s from the environment: %s", RUST_SRC_PATH_VAR, env[RUST_SRC_PATH_VAR])
            return env

        sysroot = self._probe_with_fallback(env)
        if sysroot is not None:
            log.info("Setting sysroot to %s", sysroot)
            env[RUST_SRC_PATH_VAR] = sysroot + RUST_SRC_PATH_SUFFIX
        return env

    def _probe_with_fallback(self, env: dict[str, str]) -> str | None:
        """
        Probes the sysroot, retrying once with the user's cargo bin directory prepended to PATH.
        Updates PATH in the given environment in case of a retry.
        """
        sysroot = self._try_probe(env)
        if sysroot is not None:
            return sysroot

        log.info("Retrying with extended PATH")
        env["PATH"] = self.extended_path(env)
        sysroot = self._try_probe(env)
        if sysroot is None:
            log.warning("Error reading sysroot (second try)")
            self._editor.show_warning_message(self.SYSROOT_WARNING)
        return sysroot

    def _try_probe(self, env: dict[str, str]) -> str | None:
        try:
            return self._prober.probe(env)
        except ProbeError as e:
            log.info("%s", e)
        except Exception as e:
            log.error("Unexpected error while reading sysroot: %s", e, exc_info=e)
        return None

    @staticmethod
    def extended_path(env: Mapping[str, str]) -> str:
        home = env.get("HOME") or HOME_FALLBACK
        cargo_bin = f"{home}/{CARGO_BIN_DIR}"
        path = env.get("PATH", "")
        return f"{cargo_bin}{os.pathsep}{path}" if path else cargo_bin
