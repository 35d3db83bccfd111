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
Deployment records and the registries that hold them for a container's
lifetime.
"""
from collections import OrderedDict
from enum import Enum

from droidium.exception import InvalidInstrumentationConfigurationError, EmptyRegistryError
from droidium.utils.misc import get_logger

from typing import (Any, Generic, Hashable, Iterator, List, Optional, TypeVar, Union)

logger = get_logger('droidium.deployment')

MIN_PORT = 1024
MAX_PORT = 65535


class DeploymentState(Enum):
    """
    Where a deployment is in its lifecycle. Instrumented deployments go
    through every state in order; plain ones skip from DEPLOYED to UNDEPLOYED.
    FAILED can follow any state.
    """
    DEPLOYED = 'deployed'
    RESIGNED = 'resigned'
    SERVER_REBUILT = 'server-rebuilt'
    SERVER_SIGNED = 'server-signed'
    SERVER_INSTALLED = 'server-installed'
    INSTRUMENTED = 'instrumented'
    INSTRUMENTATION_REMOVED = 'instrumentation-removed'
    UNDEPLOYED = 'undeployed'
    FAILED = 'failed'


class InstrumentationConfiguration(object):
    """
    Instrumentation requested for one deployment. The server listens on
    ``port`` both on the device and, through adb forwarding, on the host.

    Two configurations are equal when their ports are, whether a port was
    given as ``8080`` or ``"8080"``.
    """

    def __init__(self, port: Optional[Union[int, str]] = None):
        self._port: Optional[int] = None
        self.validated = False
        if port is not None:
            self.port = port

    @property
    def port(self) -> Optional[int]:
        return self._port

    @port.setter
    def port(self, value: Union[int, str]) -> None:
        self._port = self._parse_port(value)
        self.validated = False

    @staticmethod
    def _parse_port(value: Any) -> int:
        # bool is an int subclass, True is not a port
        if isinstance(value, bool):
            raise InvalidInstrumentationConfigurationError(
                'Instrumentation port must be a number, got {!r}'.format(value))
        if isinstance(value, str):
            text = value.strip()
            # isdigit() also holds for digits int() rejects, e.g. superscripts
            if not text.isdigit():
                raise InvalidInstrumentationConfigurationError(
                    'Instrumentation port "{}" is not a number'.format(value))
            try:
                port = int(text)
            except ValueError as e:
                raise InvalidInstrumentationConfigurationError(
                    'Instrumentation port "{}" is not a number'.format(value)) from e
        elif isinstance(value, int):
            port = value
        else:
            raise InvalidInstrumentationConfigurationError(
                'Instrumentation port must be an int or a str, got {!r}'.format(value))
        if not MIN_PORT <= port <= MAX_PORT:
            raise InvalidInstrumentationConfigurationError(
                'Instrumentation port {} is outside of the range {}-{}'.format(port, MIN_PORT, MAX_PORT))
        return port

    def validate(self) -> None:
        """
        :raises InvalidInstrumentationConfigurationError: If no port is set.
        """
        if self._port is None:
            raise InvalidInstrumentationConfigurationError('Instrumentation port is not set')
        self.validated = True

    def __eq__(self, other: object) -> bool:
        if isinstance(other, InstrumentationConfiguration):
            return self._port == other._port
        return False

    def __ne__(self, other: object) -> bool:
        return not self.__eq__(other)

    def __hash__(self) -> int:
        return hash(self._port)

    def __repr__(self) -> str:
        return 'InstrumentationConfiguration(port={})'.format(self._port)


class Deployment(object):
    """
    An application package deployed to a device.

    :param name: Logical deployment name.
    :param archive: The source archive; identifies the deployment in registries.
    :param deploy_apk: Path of the package as received.
    :param resigned_apk: Path of the re-signed package that is installed.
    :param base_package: Application package name, e.g. ``com.example``.
    :param main_activity: Launchable activity, fully qualified.
    :param activities: All activities declared by the package.
    """

    def __init__(self, name: str, archive: Hashable, deploy_apk: Optional[str] = None,
                 resigned_apk: Optional[str] = None, base_package: Optional[str] = None,
                 main_activity: Optional[str] = None, activities: Optional[List[str]] = None):
        self.name = name
        self.archive = archive
        self.deploy_apk = deploy_apk
        self.resigned_apk = resigned_apk
        self.base_package = base_package
        self.main_activity = main_activity
        self.activities = list(activities or [])
        self.state = DeploymentState.DEPLOYED

    def __repr__(self) -> str:
        return 'Deployment(name={!r}, base_package={!r})'.format(self.name, self.base_package)


class SelendroidDeployment(object):
    """
    An instrumentation server rebuilt for one application deployment.

    :param instrumented_deployment: The application this server instruments.
    :param configuration: Instrumentation requested for that application.
    :param working_copy: Copy of the generic server package.
    :param rebuilt: Server package with the rewritten manifest.
    :param resigned: Signed server package that is installed.
    :param server_base_package: Unique package name of the rebuilt server.
    :param selendroid_package: Package name of the generic server.
    """

    def __init__(self, instrumented_deployment: Deployment,
                 configuration: InstrumentationConfiguration,
                 working_copy: Optional[str] = None, rebuilt: Optional[str] = None,
                 resigned: Optional[str] = None, server_base_package: Optional[str] = None,
                 selendroid_package: Optional[str] = None):
        if instrumented_deployment is None:
            raise ValueError('An instrumentation server must reference the deployment it instruments')
        if configuration is None:
            raise ValueError('An instrumentation server needs an instrumentation configuration')
        self.instrumented_deployment = instrumented_deployment
        self.instrumentation_configuration = configuration
        self.working_copy = working_copy
        self.rebuilt = rebuilt
        self.resigned = resigned
        self.server_base_package = server_base_package
        self.selendroid_package = selendroid_package

    @property
    def name(self) -> str:
        return self.instrumented_deployment.name

    @property
    def archive(self) -> Hashable:
        return self.instrumented_deployment.archive

    @property
    def port(self) -> Optional[int]:
        return self.instrumentation_configuration.port

    def __repr__(self) -> str:
        return 'SelendroidDeployment(name={!r}, server_base_package={!r}, port={})'.format(
            self.name, self.server_base_package, self.port)


T = TypeVar('T', Deployment, SelendroidDeployment)


class DeploymentRegistry(Generic[T]):
    """
    Insertion ordered records keyed by their source archive. One registry
    holds application deployments, another instrumentation servers; neither is
    meant to be shared between containers.
    """

    def __init__(self, name: str = 'deployments'):
        self.name = name
        self._records: 'OrderedDict[Hashable, T]' = OrderedDict()

    def add(self, record: T) -> None:
        """
        :raises ValueError: If a record for the same archive is registered.
        """
        if record.archive in self._records:
            raise ValueError('{}: archive of "{}" is already registered'.format(self.name, record.name))
        self._records[record.archive] = record
        logger.debug('%s: added %r', self.name, record)

    def get(self, key: Hashable) -> Optional[T]:
        return self._records.get(key)

    def get_by_name(self, name: str) -> Optional[T]:
        for record in self._records.values():
            if record.name == name:
                return record
        return None

    def get_last(self) -> T:
        """
        :raises EmptyRegistryError: If nothing was added yet.
        """
        if not self._records:
            raise EmptyRegistryError('{} registry is empty'.format(self.name))
        return next(reversed(self._records.values()))

    def remove(self, record: T) -> None:
        """Evict ``record`` at teardown. Unknown records are ignored."""
        if self._records.get(record.archive) is record:
            del self._records[record.archive]

    def size(self) -> int:
        return len(self._records)

    def __len__(self) -> int:
        return self.size()

    def __iter__(self) -> Iterator[T]:
        return iter(list(self._records.values()))
