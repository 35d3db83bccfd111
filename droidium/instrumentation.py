#    Copyright 2013-2025 ARM Limited
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
#

"""
Instrumentation of application deployments with a rebuilt Selendroid server.

:class:`InstrumentationDecider` decides, per deployment, whether a server has
to be installed or removed. :class:`InstrumentationPerformer` carries the
decision out: it rebuilds the generic server for the application, signs it,
installs it and starts it through :class:`SelendroidServerManager`.
"""
import shutil
import threading
from enum import Enum

import requests

from droidium.deployment import (Deployment, DeploymentRegistry, DeploymentState,
                                 InstrumentationConfiguration, SelendroidDeployment,
                                 MIN_PORT, MAX_PORT)
from droidium.device import AndroidDevice, DeviceRegistry, TOP_CMD, runs_process
from droidium.exception import (DroidiumError, ExecutionError, InstrumentationConflictError,
                                InvalidInstrumentationConfigurationError, ResourceError,
                                StateError)
from droidium.rebuild import ManifestRebuilder
from droidium.sign import PackageSigner
from droidium.utils.android import ApkInfo
from droidium.utils.identifier import ArtifactKind, get_artifact_path
from droidium.utils.misc import get_logger
from droidium.utils.monitor import (OutputMonitor, wait_for_output, retry,
                                    DEFAULT_ATTEMPTS, DEFAULT_DELAY)

from typing import (Callable, Dict, Hashable, Mapping, Optional, Union)

logger = get_logger('droidium.instrumentation')

SERVER_INSTRUMENTATION = 'io.selendroid.ServerInstrumentation'
STATUS_URL = 'http://localhost:{}/wd/hub/status'
STATUS_TIMEOUT = 10

PortDeclaration = Union[int, str, InstrumentationConfiguration, None]


class InstrumentationEvent(Enum):
    PERFORM = 'perform'
    REMOVE = 'remove'


class InstrumentationRequest(object):
    """What the decider asks for: perform or remove instrumentation of a deployment."""

    def __init__(self, event: InstrumentationEvent, deployment_name: str, archive: Hashable,
                 configuration: InstrumentationConfiguration):
        self.event = event
        self.deployment_name = deployment_name
        self.archive = archive
        self.configuration = configuration

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, InstrumentationRequest):
            return NotImplemented
        return (self.event, self.deployment_name, self.archive, self.configuration) == \
            (other.event, other.deployment_name, other.archive, other.configuration)

    def __repr__(self) -> str:
        return 'InstrumentationRequest({}, {!r}, port={})'.format(
            self.event.value, self.deployment_name, self.configuration.port)


def validate_instrumentation(mapping: Mapping[str, InstrumentationConfiguration]) -> bool:
    """
    Check every configuration and make sure no two deployments share a port.
    An empty mapping is valid.

    :raises InvalidInstrumentationConfigurationError: If a port is unset.
    :raises InstrumentationConflictError: If a port is used twice.
    """
    owners: Dict[int, str] = {}
    for name, configuration in mapping.items():
        try:
            configuration.validate()
        except InvalidInstrumentationConfigurationError as e:
            raise InvalidInstrumentationConfigurationError(
                'Deployment "{}": {}'.format(name, e.message)) from e
        port = configuration.port
        if port in owners:
            raise InstrumentationConflictError(port, owners[port], name)
        owners[port] = name
    return True


def resolve_instrumentation(declarations: Mapping[str, PortDeclaration]
                            ) -> Dict[str, InstrumentationConfiguration]:
    """
    Turn raw per-deployment declarations into validated configurations.
    Deployments declared with ``None`` are not instrumented.
    """
    resolved: Dict[str, InstrumentationConfiguration] = {}
    for name, declaration in declarations.items():
        if declaration is None:
            continue
        if isinstance(declaration, InstrumentationConfiguration):
            resolved[name] = declaration
        else:
            resolved[name] = InstrumentationConfiguration(declaration)
    validate_instrumentation(resolved)
    return resolved


class InstrumentationDecider(object):
    """
    Maps deployment lifecycle notifications to instrumentation requests.

    :param mapping: Deployment name to configuration; refreshed before each
        test class with :meth:`set_mapping`.
    :param handler: Called with every request the decider emits.
    """

    def __init__(self, mapping: Optional[Mapping[str, InstrumentationConfiguration]] = None,
                 handler: Optional[Callable[[InstrumentationRequest], None]] = None):
        self.handler = handler
        self._mapping: Dict[str, InstrumentationConfiguration] = {}
        if mapping:
            self.set_mapping(mapping)

    @property
    def mapping(self) -> Dict[str, InstrumentationConfiguration]:
        return dict(self._mapping)

    def set_mapping(self, mapping: Mapping[str, InstrumentationConfiguration]) -> None:
        validate_instrumentation(mapping)
        self._mapping = dict(mapping)

    def is_instrumented(self, deployment_name: str) -> bool:
        return deployment_name in self._mapping

    def on_deployment_created(self, deployment_name: str,
                              archive: Hashable) -> Optional[InstrumentationRequest]:
        return self._decide(InstrumentationEvent.PERFORM, deployment_name, archive)

    def on_deployment_removed(self, deployment_name: str,
                              archive: Hashable) -> Optional[InstrumentationRequest]:
        return self._decide(InstrumentationEvent.REMOVE, deployment_name, archive)

    def _decide(self, event: InstrumentationEvent, deployment_name: str,
                archive: Hashable) -> Optional[InstrumentationRequest]:
        configuration = self._mapping.get(deployment_name)
        if configuration is None:
            return None
        request = InstrumentationRequest(event, deployment_name, archive, configuration)
        logger.debug('Decided %r', request)
        if self.handler is not None:
            self.handler(request)
        return request


def validate_port(port: Optional[int]) -> int:
    if port is None or not MIN_PORT <= port <= MAX_PORT:
        raise InvalidInstrumentationConfigurationError(
            'Port must be between {} and {}, got {}'.format(MIN_PORT, MAX_PORT, port))
    return port


class SelendroidServerManager(object):
    """
    Installs, starts and removes rebuilt Selendroid servers on one device.

    :param device: Device the servers live on.
    :param attempts: How many times device conditions and the server status
        are polled.
    :param delay: Seconds between two polls.
    """

    def __init__(self, device: AndroidDevice, attempts: int = DEFAULT_ATTEMPTS,
                 delay: float = DEFAULT_DELAY, session: Optional[requests.Session] = None):
        if device is None:
            raise ValueError('Device for the server manager must not be None')
        self.device = device
        self.attempts = attempts
        self.delay = delay
        self.session = session or requests.Session()

    def install(self, deployment: SelendroidDeployment) -> None:
        """
        :raises ExecutionError: If the server is not installed afterwards.
        """
        if not deployment.resigned:
            raise StateError('Server for "{}" has not been signed'.format(deployment.name))
        for stale in (deployment.selendroid_package, deployment.server_base_package):
            if stale and self.device.is_package_installed(stale):
                logger.info('Removing stale %s from %s', stale, self.device)
                self.device.uninstall_package(stale)
        self.device.install_package(deployment.resigned)
        if not self.device.is_package_installed(deployment.server_base_package):
            raise ExecutionError('Server {} was not installed on {}'.format(
                deployment.server_base_package, self.device))

    def instrument(self, deployment: SelendroidDeployment) -> None:
        """
        Start the server against its application and wait until it answers.
        The port forwarding is removed again if that fails.

        :raises ExecutionError: If the server does not come up.
        """
        port = validate_port(deployment.port)
        self.device.create_port_forwarding(port, port)

        command = "am instrument -e main_activity '' -e server_port {} {}/{}".format(
            port, deployment.server_base_package, SERVER_INSTRUMENTATION)
        application_package = deployment.instrumented_deployment.base_package
        try:
            monitor = OutputMonitor(application_package, contains=True, match=runs_process)
            self.device.execute_shell_command(command, monitor)
            wait_for_output(self.device.execute_shell_command, monitor, TOP_CMD,
                            self.attempts, self.delay)
            self.wait_for_server(port)
        except DroidiumError as e:
            self._remove_port_forwarding(port)
            raise ExecutionError('Unable to instrument {} with {} on port {}: {}'.format(
                application_package, deployment.server_base_package, port, e.message),
                command=command) from e
        logger.info('%s instrumented by %s on port %s', application_package,
                    deployment.server_base_package, port)

    def is_server_up(self, port: int) -> bool:
        try:
            response = self.session.get(STATUS_URL.format(port), timeout=STATUS_TIMEOUT)
        except requests.RequestException as e:
            logger.warning('Server on port %s not reachable: %s', port, e)
            return False
        if response.status_code != 200:
            logger.info('Response from port %s was %s, not 200', port, response.status_code)
            return False
        return True

    def wait_for_server(self, port: int) -> None:
        """
        :raises TimeoutError: If the server status never reports success.
        """
        retry(lambda: self.is_server_up(port), STATUS_URL.format(validate_port(port)),
              self.attempts, self.delay)

    def disable(self, deployment: SelendroidDeployment) -> None:
        self.device.execute_shell_command('pm disable {}'.format(deployment.server_base_package))

    def uninstall(self, deployment: SelendroidDeployment) -> None:
        """
        Uninstall the server. The port forwarding is removed whatever happens.
        """
        try:
            self.device.execute_shell_command('pm uninstall {}'.format(deployment.server_base_package))
        except ExecutionError as e:
            raise ExecutionError('Unable to uninstall server {}'.format(deployment.server_base_package),
                                 command=e.command, output=e.output) from e
        finally:
            self._remove_port_forwarding(validate_port(deployment.port))

    def _remove_port_forwarding(self, port: int) -> None:
        try:
            self.device.remove_port_forwarding(port, port)
        except DroidiumError as e:
            logger.warning('Unable to remove forwarding of port %s on %s: %s', port, self.device, e)


class InstrumentationPerformer(object):
    """
    Runs the instrumentation pipeline for the requests of an
    :class:`InstrumentationDecider`.

    Every server rebuilt by one performer gets its own package name, made
    unique with a counter, so that several applications can be instrumented
    on the same device.
    """

    def __init__(self, server_apk: str, working_dir: str, signer: PackageSigner,
                 rebuilder: ManifestRebuilder,
                 deployments: 'DeploymentRegistry[Deployment]',
                 servers: 'DeploymentRegistry[SelendroidDeployment]',
                 devices: DeviceRegistry,
                 server_manager_factory: Callable[[AndroidDevice], SelendroidServerManager] = SelendroidServerManager,
                 apk_info_factory: Callable[[str], ApkInfo] = ApkInfo):
        self.server_apk = server_apk
        self.working_dir = working_dir
        self.signer = signer
        self.rebuilder = rebuilder
        self.deployments = deployments
        self.servers = servers
        self.devices = devices
        self.server_manager_factory = server_manager_factory
        self.apk_info_factory = apk_info_factory
        self._counter = 0
        self._lock = threading.Lock()

    def __call__(self, request: InstrumentationRequest) -> None:
        if request.event is InstrumentationEvent.PERFORM:
            self.perform(request)
        else:
            self.remove(request)

    def next_server_package(self, base: str) -> str:
        with self._lock:
            self._counter += 1
            return '{}_{}'.format(base, self._counter)

    def perform(self, request: InstrumentationRequest) -> SelendroidDeployment:
        """
        :returns: The registered, running server deployment.
        :raises DroidiumError: If any step fails; the application deployment
            is marked as failed.
        """
        request.configuration.validate()
        instrumented = self._get_instrumented(request)
        try:
            return self._perform(request, instrumented)
        except DroidiumError:
            instrumented.state = DeploymentState.FAILED
            raise

    def _perform(self, request: InstrumentationRequest, instrumented: Deployment) -> SelendroidDeployment:
        if not instrumented.resigned_apk or not instrumented.base_package:
            raise StateError('Deployment "{}" was not resigned before instrumentation'
                             .format(instrumented.name))
        instrumented.state = DeploymentState.RESIGNED

        working_copy = self._copy_server()
        selendroid_package = self.apk_info_factory(working_copy).package
        if not selendroid_package:
            raise ExecutionError('Unable to read package name of {}'.format(self.server_apk))
        server_package = self.next_server_package(selendroid_package)

        rebuilt = self.rebuilder.rebuild(working_copy, server_package, instrumented.base_package)
        instrumented.state = DeploymentState.SERVER_REBUILT
        resigned = self.signer.resign(rebuilt)
        instrumented.state = DeploymentState.SERVER_SIGNED

        server = SelendroidDeployment(instrumented, request.configuration,
                                      working_copy=working_copy, rebuilt=rebuilt,
                                      resigned=resigned, server_base_package=server_package,
                                      selendroid_package=selendroid_package)
        self.servers.add(server)

        manager = self.server_manager_factory(self._get_device(request.deployment_name))
        manager.install(server)
        instrumented.state = DeploymentState.SERVER_INSTALLED
        manager.instrument(server)
        instrumented.state = DeploymentState.INSTRUMENTED
        return server

    def remove(self, request: InstrumentationRequest) -> None:
        """
        Disable and uninstall the server instrumenting ``request``'s
        deployment, then forget about it.
        """
        server = self.servers.get(request.archive) or self.servers.get_by_name(request.deployment_name)
        if server is None:
            raise StateError('No instrumentation server registered for "{}"'.format(request.deployment_name))
        manager = self.server_manager_factory(self._get_device(request.deployment_name))
        try:
            manager.disable(server)
            manager.uninstall(server)
        finally:
            self.servers.remove(server)
        server.instrumented_deployment.state = DeploymentState.INSTRUMENTATION_REMOVED

    def _get_instrumented(self, request: InstrumentationRequest) -> Deployment:
        deployment = self.deployments.get(request.archive) or \
            self.deployments.get_by_name(request.deployment_name)
        if deployment is None:
            raise StateError('Deployment "{}" to instrument is not registered'
                             .format(request.deployment_name))
        return deployment

    def _get_device(self, deployment_name: str) -> AndroidDevice:
        device = self.devices.get_by_deployment_name(deployment_name)
        return device if device is not None else self.devices.get_single()

    def _copy_server(self) -> str:
        target = get_artifact_path(self.working_dir, ArtifactKind.APK)
        try:
            shutil.copyfile(self.server_apk, target)
        except OSError as e:
            raise ResourceError('Unable to copy server package {} to {}: {}'.format(
                self.server_apk, target, e)) from e
        return target
