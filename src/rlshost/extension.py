"""
Activation and deactivation of the RLS host within an editor session.
"""

import logging
import os
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from rlshost.commands import CommandBindings
from rlshost.config import RLSConfiguration
from rlshost.constants import (
    CLIENT_NAME,
    DEPRECATED_ENV_VARS,
    DEPRECATED_RLS_TOML,
    DOCUMENT_SELECTOR,
    STATUS_START_FAILED,
    STATUS_STARTING,
)
from rlshost.editor import EditorSurface, StatusBarSpinner
from rlshost.environment import RlsEnvironmentBuilder
from rlshost.lsp.client import LanguageClient, LanguageClientOptions
from rlshost.process import RlsProcess
from rlshost.progress import ProgressTracker
from rlshost.rustup import RustupRunner
from rlshost.supervisor import ProcessSupervisor

log = logging.getLogger(__name__)


@dataclass
class ExtensionContext:
    workspace_root: str
    editor: EditorSurface
    env: Mapping[str, str] | None = None
    """the ambient environment; if None, the environment of the current process"""
    subscriptions: list[Callable[[], None]] = field(default_factory=list)
    """disposal callbacks, invoked in reverse order on deactivation"""
    commands: dict[str, Callable[..., Any]] = field(default_factory=dict)

    @property
    def ambient_env(self) -> Mapping[str, str]:
        return os.environ if self.env is None else self.env


class RlsExtension:
    """
    Wires the RLS host's components together for one activation.
    """

    def __init__(self, context: ExtensionContext, config: RLSConfiguration) -> None:
        self.context = context
        self.config = config
        editor = context.editor
        self.rustup = RustupRunner(config, editor)
        self.environment_builder = RlsEnvironmentBuilder(config, editor, base_env=context.ambient_env)
        self.supervisor = ProcessSupervisor(config, editor, context.workspace_root, rustup=self.rustup, output_channel=editor.output_channel)
        self.client = LanguageClient(
            CLIENT_NAME,
            self._start_server,
            LanguageClientOptions(
                workspace_root=context.workspace_root,
                document_selector=DOCUMENT_SELECTOR,
                reveal_output_channel_on=config.reveal_output_channel_on,
                output_channel=editor.output_channel,
            ),
        )
        self.progress_tracker = ProgressTracker(StatusBarSpinner(editor))
        self.commands = CommandBindings(self.client, editor, self.rustup)

    def _start_server(self) -> RlsProcess:
        """
        Server options of the language client: updates the toolchain (if configured), then launches the RLS.
        The update always completes before the launch is attempted.
        """
        if self.config.update_on_startup:
            self.rustup.update(self.context.ambient_env)
        env = self.environment_builder.build()
        return self.supervisor.launch(env)

    def warn_on_deprecated_inputs(self) -> None:
        rls_toml = Path(self.context.workspace_root) / DEPRECATED_RLS_TOML
        if rls_toml.exists():
            self.context.editor.show_warning_message(
                "Found deprecated rls.toml. Use the rls.yml workspace configuration instead."
            )
        if any(self.context.ambient_env.get(var) for var in DEPRECATED_ENV_VARS):
            self.context.editor.show_warning_message(
                "Found deprecated environment variables (RLS_PATH or RLS_ROOT). Use the `rls_path` or `rls_root` settings."
            )

    def start(self) -> None:
        editor = self.context.editor
        editor.set_status_bar_message(STATUS_STARTING)
        self.warn_on_deprecated_inputs()

        self.progress_tracker.attach(self.client)
        self.commands.register(self.context.commands)
        self.context.subscriptions.append(self.supervisor.stop)
        self.context.subscriptions.append(self.client.stop)
        # disposed in reverse order, so the expected exit is known before the client terminates the process
        self.context.subscriptions.append(self.supervisor.prepare_stop)

        self.client.start()
        if not self.client.is_running():
            editor.set_status_bar_message(STATUS_START_FAILED)

    def dispose(self) -> None:
        while self.context.subscriptions:
            dispose = self.context.subscriptions.pop()
            try:
                dispose()
            except Exception as e:
                log.error("Error during disposal: %s", e, exc_info=e)


def activate(context: ExtensionContext, config: RLSConfiguration | None = None) -> RlsExtension:
    """
    Activates the RLS host for the given workspace.

    :param context: the activation context
    :param config: the launch configuration; if None, it is loaded from the workspace
    :return: the activated extension
    :raises LaunchRejectedError: if no RLS process could be obtained
    :raises LaunchSpawnError: if the RLS process could not be spawned for a reason other than a missing executable
    """
    if config is None:
        config = RLSConfiguration.load_from_workspace(context.workspace_root)
    log.info("Activating RLS host for %s with %s", context.workspace_root, config)
    extension = RlsExtension(context, config)
    extension.start()
    return extension


def deactivate(extension: RlsExtension) -> None:
    extension.dispose()
