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
The container: owner of all per-run state.

Everything a test run needs (working directory, registries, activity map,
signer, rebuilder) is created by :meth:`DroidiumContainer.start` and thrown
away by :meth:`DroidiumContainer.stop`. Pipeline steps are plain method calls
made in the order a test run needs them::

    with DroidiumContainer(configuration, AndroidDevice('emulator-5554')) as container:
        container.configure_instrumentation({'app': 8080})
        container.deploy('app', '/path/to/app.apk')
        container.attach_driver(driver, 'app')
        container.native_activity_manager.start_activity('MainActivity')
        ...
        container.detach_driver(driver)
        container.undeploy('app')
"""
import shutil
from typing import Any, Callable, Mapping, Optional

from droidium.activity import ActivityDriverMapper, DeviceActivityManager, NativeActivityManager
from droidium.application import ApplicationManager, DeploymentInstaller
from droidium.configuration import DroidiumConfiguration
from droidium.deployment import Deployment, DeploymentRegistry, SelendroidDeployment
from droidium.device import AndroidDevice, DeviceMetadata, DeviceRegistry
from droidium.exception import DroidiumError, StateError
from droidium.instrumentation import (InstrumentationDecider, InstrumentationPerformer,
                                      InstrumentationRequest, InstrumentationEvent,
                                      SelendroidServerManager, resolve_instrumentation,
                                      PortDeclaration)
from droidium.rebuild import ManifestRebuilder
from droidium.sign import PackageSigner
from droidium.utils.android import ApkInfo
from droidium.utils.identifier import create_working_directory
from droidium.utils.misc import get_logger

logger = get_logger('droidium.container')


class DroidiumContainer(object):
    """
    :param configuration: Container configuration; validated on start.
    :param device: Device to use. Built from ``configuration.serial`` if not given.
    :param rebuilder_factory: Builds the manifest rebuilder for a working directory.
    :param signer_factory: Builds the package signer for a working directory.
    """

    def __init__(self, configuration: DroidiumConfiguration, device: Optional[AndroidDevice] = None,
                 rebuilder_factory: Optional[Callable[[str], ManifestRebuilder]] = None,
                 signer_factory: Optional[Callable[[str], PackageSigner]] = None,
                 application_manager_factory: Optional[Callable[[AndroidDevice], ApplicationManager]] = None,
                 server_manager_factory: Optional[Callable[[AndroidDevice], SelendroidServerManager]] = None,
                 apk_info_factory: Optional[Callable[[str], ApkInfo]] = None):
        self.configuration = configuration
        self.device = device
        self._rebuilder_factory = rebuilder_factory
        self._signer_factory = signer_factory
        self._application_manager_factory = application_manager_factory
        self._server_manager_factory = server_manager_factory
        self._apk_info_factory = apk_info_factory or ApkInfo

        self.working_dir: Optional[str] = None
        self.devices: Optional[DeviceRegistry] = None
        self.deployments: Optional['DeploymentRegistry[Deployment]'] = None
        self.servers: Optional['DeploymentRegistry[SelendroidDeployment]'] = None
        self.activity_mapper: Optional[ActivityDriverMapper] = None
        self.decider: Optional[InstrumentationDecider] = None
        self.installer: Optional[DeploymentInstaller] = None
        self.performer: Optional[InstrumentationPerformer] = None

    @property
    def started(self) -> bool:
        return self.working_dir is not None

    @property
    def native_activity_manager(self) -> NativeActivityManager:
        self._check_started()
        return NativeActivityManager(self.activity_mapper)

    @property
    def device_activity_manager(self) -> DeviceActivityManager:
        self._check_started()
        return DeviceActivityManager(self.devices.get_single())

    def start(self, container_qualifier: Optional[str] = None) -> None:
        """
        Create the working directory and per-run state, and register the device.

        :param container_qualifier: Qualifier the device is registered under;
            defaults to the configured one.
        :raises ConfigurationError: If the configuration is invalid.
        :raises ResourceError: If the working directory cannot be created.
        """
        if self.started:
            raise StateError('Container is already started')
        config = self.configuration
        config.validate()
        if self.device is None:
            if not config.serial:
                raise StateError('No device given and no serial configured')
            self.device = AndroidDevice(config.serial, adb_server=config.adb_server,
                                        adb_port=config.adb_port,
                                        timeout=config.command_timeout)

        self.working_dir = create_working_directory(config.tmp_dir)
        self.devices = DeviceRegistry()
        self.deployments = DeploymentRegistry('deployments')
        self.servers = DeploymentRegistry('instrumentation servers')
        self.activity_mapper = ActivityDriverMapper()

        signer = self._make_signer(self.working_dir)
        rebuilder = self._make_rebuilder(self.working_dir)
        workdir = self.working_dir
        attempts = config.server_start_attempts
        application_manager_factory = self._application_manager_factory or \
            (lambda device: ApplicationManager(device, working_dir=workdir))
        server_manager_factory = self._server_manager_factory or \
            (lambda device: SelendroidServerManager(device, attempts=attempts))
        self.installer = DeploymentInstaller(workdir, signer, self.deployments, self.devices,
                                             manager_factory=application_manager_factory,
                                             apk_info_factory=self._apk_info_factory)
        self.performer = InstrumentationPerformer(config.server_apk, workdir, signer, rebuilder,
                                                  self.deployments, self.servers, self.devices,
                                                  server_manager_factory=server_manager_factory,
                                                  apk_info_factory=self._apk_info_factory)
        self.decider = InstrumentationDecider()

        qualifier = container_qualifier or config.container_qualifier
        self.devices.put(self.device, DeviceMetadata(qualifier))
        logger.info('Container started on %s, working directory %s', self.device, self.working_dir)

    def configure_instrumentation(self, declarations: Mapping[str, PortDeclaration]) -> None:
        """
        Set which deployments are instrumented and on which port, before a
        test class runs.

        :raises ConfigurationError: If a port is invalid or used twice.
        """
        self._check_started()
        self.decider.set_mapping(resolve_instrumentation(declarations))

    def deploy(self, name: str, archive: str) -> Deployment:
        """
        Install ``archive`` as deployment ``name`` and instrument it if it
        was declared so.
        """
        self._check_started()
        deployment = self.installer.deploy(name, archive, self.device)
        request = self.decider.on_deployment_created(name, archive)
        if request is not None:
            self.performer.perform(request)
        return deployment

    def undeploy(self, name: str) -> None:
        """
        Remove the instrumentation of deployment ``name``, if any, then the
        deployment itself.
        """
        self._check_started()
        deployment = self.deployments.get_by_name(name)
        if deployment is None:
            raise StateError('Deployment "{}" is not deployed'.format(name))
        request = self.decider.on_deployment_removed(name, deployment.archive)
        if request is not None and self.servers.get(deployment.archive) is not None:
            # the application is uninstalled even if its server could not be
            self._best_effort('remove instrumentation of "{}"'.format(name),
                              self.performer.remove, request)
        self.installer.undeploy(deployment.archive)

    def attach_driver(self, driver: Any, deployment_name: str) -> None:
        """Make the activities of a deployment resolvable to ``driver``."""
        self._check_started()
        deployment = self.deployments.get_by_name(deployment_name)
        if deployment is None:
            raise StateError('Deployment "{}" is not deployed'.format(deployment_name))
        self.activity_mapper.put(driver, deployment.activities)

    def detach_driver(self, driver: Any) -> None:
        self._check_started()
        self.activity_mapper.remove_activities(driver)

    def stop(self) -> None:
        """
        Tear everything down. Failures are logged and do not stop the rest
        of the teardown.
        """
        if not self.started:
            return
        for server in list(self.servers):
            request = InstrumentationRequest(InstrumentationEvent.REMOVE, server.name,
                                             server.archive, server.instrumentation_configuration)
            self._best_effort('remove instrumentation of "{}"'.format(server.name),
                              self.performer.remove, request)
        for deployment in list(self.deployments):
            self._best_effort('undeploy "{}"'.format(deployment.name),
                              self.installer.undeploy, deployment.archive)
        self.activity_mapper.clear()
        self.devices.remove(self.device)
        if self.configuration.remove_tmp_dir:
            self._best_effort('remove {}'.format(self.working_dir), shutil.rmtree, self.working_dir)
        else:
            logger.info('Keeping working directory %s', self.working_dir)
        self.working_dir = None
        logger.info('Container stopped')

    def __enter__(self) -> 'DroidiumContainer':
        self.start()
        return self

    def __exit__(self, exc_type, exc_value, traceback) -> None:
        self.stop()

    def _best_effort(self, description: str, func: Callable, *args: Any) -> None:
        try:
            func(*args)
        except (DroidiumError, OSError) as e:
            logger.warning('Unable to %s: %s', description, e)

    def _check_started(self) -> None:
        if not self.started:
            raise StateError('Container is not started')

    def _make_signer(self, working_dir: str) -> PackageSigner:
        if self._signer_factory is not None:
            return self._signer_factory(working_dir)
        return PackageSigner(self.configuration.signing, working_dir,
                             timeout=self.configuration.command_timeout)

    def _make_rebuilder(self, working_dir: str) -> ManifestRebuilder:
        if self._rebuilder_factory is not None:
            return self._rebuilder_factory(working_dir)
        return ManifestRebuilder(working_dir, timeout=self.configuration.command_timeout)
