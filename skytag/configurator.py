"""Post-boot configuration of a single node.

Each node is configured in isolation: ``configure`` never raises for a
node-level failure, it reports it as ``ConfigureFailed`` so the caller can
tear the node down and count it as shortfall.
"""

from __future__ import annotations

import io
import socket
from collections.abc import Callable
from dataclasses import dataclass

import paramiko
from loguru import logger
from tenacity import (
    RetryError,
    Retrying,
    retry_if_exception_type,
    stop_after_delay,
    wait_fixed,
)

from skytag.cancellation import CancellationToken
from skytag.constants import SSH_PORT
from skytag.core.exceptions import CancelledError, NodeConfigurationError
from skytag.types import NodeMetadata, TemplateOptions

log = logger.bind(component="configurator")

type CommandRunner = Callable[[str], str]
type RunnerFactory = Callable[[NodeMetadata, TemplateOptions], CommandRunner]
type PortProbe = Callable[[str, int, float, CancellationToken], None]


# =============================================================================
# Outcomes
# =============================================================================


@dataclass(frozen=True, slots=True)
class Configured:
    node: NodeMetadata


@dataclass(frozen=True, slots=True)
class ConfigureFailed:
    node: NodeMetadata
    error: Exception


type ConfigureOutcome = Configured | ConfigureFailed


# =============================================================================
# SSH
# =============================================================================


class PortNotReadyError(Exception):
    """Port not accepting connections yet - retry."""


def wait_for_port(host: str, port: int, timeout: float, token: CancellationToken) -> None:
    """Wait for ``host:port`` to accept TCP connections."""

    def _check() -> None:
        try:
            with socket.create_connection((host, port), timeout=2):
                return
        except OSError:
            raise PortNotReadyError() from None

    retrying = Retrying(
        stop=stop_after_delay(timeout),
        wait=wait_fixed(1),
        retry=retry_if_exception_type(PortNotReadyError),
        sleep=token.sleep,
    )
    try:
        retrying(_check)
    except RetryError as e:
        raise TimeoutError(f"{host}:{port} not reachable after {timeout:.0f}s") from e


class SSHCommandRunner:
    """Runs commands on a node with its key pair credentials."""

    def __init__(self, node: NodeMetadata, options: TemplateOptions, port: int = SSH_PORT) -> None:
        self._node = node
        self._options = options
        self._port = port

    def _connect(self) -> paramiko.SSHClient:
        node = self._node
        if node.address is None:
            raise NodeConfigurationError(node.id, "node has no address")

        client = paramiko.SSHClient()
        client.set_missing_host_key_policy(paramiko.AutoAddPolicy())
        kwargs: dict = {
            "hostname": node.address,
            "port": self._port,
            "username": node.credentials.user if node.credentials else self._options.login_user,
            "timeout": self._options.ssh_timeout,
            "allow_agent": False,
            "look_for_keys": False,
        }
        if node.credentials is not None:
            if node.credentials.is_private_key:
                kwargs["pkey"] = paramiko.RSAKey.from_private_key(io.StringIO(node.credentials.key))
            else:
                kwargs["password"] = node.credentials.key
        client.connect(**kwargs)
        return client

    def __call__(self, command: str) -> str:
        cmd_preview = command[:80] + "..." if len(command) > 80 else command
        log.debug("{id}: exec {cmd}", id=self._node.id, cmd=cmd_preview)
        client = self._connect()
        try:
            _, stdout, stderr = client.exec_command(command, timeout=self._options.script_timeout)
            code = stdout.channel.recv_exit_status()
            if code != 0:
                raise NodeConfigurationError(
                    self._node.id, f"command exited {code}: {stderr.read().decode().strip()}"
                )
            return stdout.read().decode()
        finally:
            client.close()


def ssh_runner_factory(node: NodeMetadata, options: TemplateOptions) -> CommandRunner:
    return SSHCommandRunner(node, options)


# =============================================================================
# Configurator
# =============================================================================


class NodeConfigurator:
    """Applies TemplateOptions to one running node."""

    def __init__(
        self,
        runner_factory: RunnerFactory = ssh_runner_factory,
        port_probe: PortProbe = wait_for_port,
        token: CancellationToken | None = None,
    ) -> None:
        self._runner_factory = runner_factory
        self._port_probe = port_probe
        self._token = token

    def _apply(self, node: NodeMetadata, options: TemplateOptions, token: CancellationToken) -> None:
        if node.address is None:
            raise NodeConfigurationError(node.id, "node has no address")
        if options.run_script is None:
            return

        self._port_probe(node.address, SSH_PORT, options.ssh_timeout, token)
        token.raise_if_cancelled()
        self._runner_factory(node, options)(options.run_script)

    def configure(
        self,
        node: NodeMetadata,
        options: TemplateOptions,
        token: CancellationToken | None = None,
    ) -> ConfigureOutcome:
        token = token or self._token or CancellationToken()
        try:
            self._apply(node, options, token)
        except CancelledError:
            raise
        except Exception as e:
            log.error("<< error applying instance({id}) [{error}]", id=node.id, error=e)
            return ConfigureFailed(node, e)

        log.debug("<< options applied instance({id})", id=node.id)
        return Configured(node)
