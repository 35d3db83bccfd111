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
Installation and removal of application packages under test.
"""
import shutil
from typing import Callable, Hashable, Optional

from droidium.deployment import Deployment, DeploymentRegistry, DeploymentState
from droidium.device import AndroidDevice, DeviceRegistry, PACKAGES_LIST_CMD, lists_package
from droidium.exception import ExecutionError, ResourceError, StateError, DroidiumError
from droidium.sign import PackageSigner
from droidium.utils.android import ApkInfo, expand_activity_name
from droidium.utils.identifier import ArtifactKind, get_artifact_path
from droidium.utils.misc import get_logger
from droidium.utils.monitor import OutputMonitor, wait_for_output, DEFAULT_ATTEMPTS, DEFAULT_DELAY

logger = get_logger('droidium.application')


class ApplicationManager(object):
    """
    Installs and removes application deployments on one device.

    :param device: Target device.
    :param working_dir: If given, output of the uninstall wait is logged
        to a file there.
    """

    def __init__(self, device: AndroidDevice, working_dir: Optional[str] = None,
                 attempts: int = DEFAULT_ATTEMPTS, delay: float = DEFAULT_DELAY):
        if device is None:
            raise ValueError('Device for the application manager must not be None')
        self.device = device
        self.working_dir = working_dir
        self.attempts = attempts
        self.delay = delay

    def install(self, deployment: Deployment) -> None:
        """
        Install the resigned package, replacing an installed copy.

        :raises ExecutionError: If the package is not installed afterwards.
        """
        if not deployment.resigned_apk or not deployment.base_package:
            raise StateError('Deployment "{}" has not been resigned'.format(deployment.name))
        if self.device.is_package_installed(deployment.base_package):
            logger.info('%s is already installed on %s, removing it first',
                        deployment.base_package, self.device)
            self.device.uninstall_package(deployment.base_package)
        self.device.install_package(deployment.resigned_apk)
        if not self.device.is_package_installed(deployment.base_package):
            raise ExecutionError('Application {} was not installed on {}'.format(
                deployment.base_package, self.device))

    def uninstall(self, deployment: Deployment) -> None:
        """
        Uninstall the application and wait until the package manager no
        longer lists it.

        :raises TimeoutError: If the package is still listed after the last poll.
        """
        package = deployment.base_package
        self.device.execute_shell_command('pm uninstall {}'.format(package))
        logfile = get_artifact_path(self.working_dir, ArtifactKind.LOG) if self.working_dir else None
        monitor = OutputMonitor(package, contains=False, logfile=logfile, match=lists_package)
        wait_for_output(self.device.execute_shell_command, monitor, PACKAGES_LIST_CMD,
                        self.attempts, self.delay)

    def disable(self, deployment: Deployment) -> None:
        self.device.execute_shell_command('pm disable {}'.format(deployment.base_package))


class DeploymentInstaller(object):
    """
    Turns application packages into registered, installed deployments.

    :param working_dir: Directory packages are copied and resigned into.
    :param signer: Signer used to resign every package.
    :param deployments: Registry application deployments are added to.
    :param devices: Registry the target device is looked up in.
    """

    def __init__(self, working_dir: str, signer: PackageSigner,
                 deployments: 'DeploymentRegistry[Deployment]', devices: DeviceRegistry,
                 manager_factory: Callable[[AndroidDevice], ApplicationManager] = ApplicationManager,
                 apk_info_factory: Callable[[str], ApkInfo] = ApkInfo):
        self.working_dir = working_dir
        self.signer = signer
        self.deployments = deployments
        self.devices = devices
        self.manager_factory = manager_factory
        self.apk_info_factory = apk_info_factory

    def deploy(self, name: str, archive: str, device: Optional[AndroidDevice] = None) -> Deployment:
        """
        Resign ``archive``, register it as deployment ``name`` and install it.

        :param archive: Path of the application package.
        :param device: Target device; the only registered device if not given.
        """
        device = device or self.devices.get_single()
        deploy_apk = get_artifact_path(self.working_dir, ArtifactKind.APK)
        try:
            shutil.copyfile(archive, deploy_apk)
        except OSError as e:
            raise ResourceError('Unable to copy {} to {}: {}'.format(archive, deploy_apk, e)) from e
        resigned = self.signer.resign(deploy_apk)

        info = self.apk_info_factory(resigned)
        if not info.package:
            raise ExecutionError('Unable to read package name of {}'.format(archive))
        main_activity = expand_activity_name(info.package, info.activity) if info.activity else None
        deployment = Deployment(name, archive, deploy_apk=deploy_apk, resigned_apk=resigned,
                                base_package=info.package, main_activity=main_activity,
                                activities=info.activities)
        self.deployments.add(deployment)
        self.devices.add_deployment_for_device(device, name)
        try:
            self.manager_factory(device).install(deployment)
        except DroidiumError:
            deployment.state = DeploymentState.FAILED
            raise
        logger.info('Deployed "%s" (%s) to %s', name, info.package, device)
        return deployment

    def undeploy(self, archive: Hashable) -> Deployment:
        """
        Disable and uninstall the deployment made from ``archive``, then
        forget about it.
        """
        deployment = self.deployments.get(archive)
        if deployment is None:
            raise StateError('No deployment registered for {}'.format(archive))
        device = self.devices.get_by_deployment_name(deployment.name) or self.devices.get_single()
        manager = self.manager_factory(device)
        try:
            manager.disable(deployment)
            manager.uninstall(deployment)
        finally:
            self.deployments.remove(deployment)
            metadata = self.devices.get_metadata(device)
            if metadata is not None:
                metadata.remove_deployment_name(deployment.name)
        deployment.state = DeploymentState.UNDEPLOYED
        logger.info('Undeployed "%s" from %s', deployment.name, device)
        return deployment
