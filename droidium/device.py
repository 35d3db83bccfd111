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
Android device handles and the registry tracking which device serves which
container and deployments.
"""
import re
import subprocess
from collections import OrderedDict

from droidium.exception import ExecutionError, DeviceSelectionError
from droidium.utils.android import adb_command, get_adb_command
from droidium.utils.misc import get_logger, stream_output

from typing import Dict, Iterable, Iterator, List, Optional, TYPE_CHECKING
if TYPE_CHECKING:
    from droidium.utils.annotation_helpers import LineReceiver

logger = get_logger('droidium.device')

EMULATOR_SERIAL_REGEX = re.compile(r'^emulator-(?P<port>\d+)$')
PACKAGES_LIST_CMD = 'pm list packages -f'
TOP_CMD = 'top -n 1'


def lists_package(line: str, package: str) -> bool:
    """Whether a ``pm list packages -f`` line is the one for ``package``."""
    return line.strip().endswith('=' + package)


def runs_process(line: str, package: str) -> bool:
    """Whether a ``top`` line is the main process of ``package``."""
    fields = line.split()
    return bool(fields) and fields[-1] == package


class AndroidDevice(object):
    """
    Handle to a device reachable through adb.

    :param serial: adb serial of the device, e.g. ``emulator-5554``.
    :param adb_server: Host of a remote adb server.
    :param adb_port: Port of a remote adb server.
    :param timeout: Default timeout in seconds for adb commands.
    """

    @property
    def console_port(self) -> Optional[str]:
        """Console port of an emulator, ``None`` for physical devices."""
        match = EMULATOR_SERIAL_REGEX.match(self.serial)
        return match.group('port') if match else None

    @property
    def is_emulator(self) -> bool:
        return self.console_port is not None

    def __init__(self, serial: str, adb_server: Optional[str] = None,
                 adb_port: Optional[int] = None, timeout: Optional[int] = None):
        if not serial:
            raise ValueError('Device serial must not be empty')
        self.serial = serial
        self.adb_server = adb_server
        self.adb_port = adb_port
        self.timeout = timeout

    def adb(self, *args: str, timeout: Optional[int] = None) -> str:
        return adb_command(self.serial, list(args), timeout=timeout or self.timeout,
                           adb_server=self.adb_server, adb_port=self.adb_port)

    def is_online(self) -> bool:
        try:
            return self.adb('get-state').strip() == 'device'
        except ExecutionError:
            return False

    def execute_shell_command(self, command: str,
                              receiver: Optional['LineReceiver'] = None) -> List[str]:
        """
        Run ``command`` in a device shell.

        :param receiver: Called with every output line as it arrives.
        :returns: All output lines.
        :raises ExecutionError: If the shell command cannot be run.
        """
        lines: List[str] = []

        def collect(line: str) -> None:
            lines.append(line)
            if receiver is not None:
                receiver(line)

        full_command = get_adb_command(self.serial, ['shell', command],
                                       self.adb_server, self.adb_port)
        try:
            stream_output(full_command, collect, timeout=self.timeout)
        except subprocess.CalledProcessError as e:
            raise ExecutionError('Shell command failed on {}'.format(self.serial),
                                 command=command, output=e.output) from e
        return lines

    def install_package(self, path: str, reinstall: bool = False) -> None:
        """
        :raises ExecutionError: If adb reports a failure.
        """
        args = ['install'] + (['-r'] if reinstall else []) + [path]
        output = self.adb(*args)
        if 'Failure' in output:
            raise ExecutionError('Unable to install {} on {}'.format(path, self.serial),
                                 command=args, output=output)
        logger.info('Installed %s on %s', path, self.serial)

    def uninstall_package(self, package: str) -> None:
        """
        :raises ExecutionError: If adb reports a failure.
        """
        output = self.adb('uninstall', package)
        if 'Failure' in output:
            raise ExecutionError('Unable to uninstall {} from {}'.format(package, self.serial),
                                 command=['uninstall', package], output=output)
        logger.info('Uninstalled %s from %s', package, self.serial)

    def is_package_installed(self, package: str) -> bool:
        return any(lists_package(line, package)
                   for line in self.execute_shell_command(PACKAGES_LIST_CMD))

    def create_port_forwarding(self, local: int, remote: int) -> None:
        self.adb('forward', 'tcp:{}'.format(local), 'tcp:{}'.format(remote))
        logger.debug('Forwarding tcp:%s to tcp:%s on %s', local, remote, self.serial)

    def remove_port_forwarding(self, local: int, remote: Optional[int] = None) -> None:
        # adb only needs the local side to identify a forwarding
        self.adb('forward', '--remove', 'tcp:{}'.format(local))
        logger.debug('Removed forwarding of tcp:%s on %s', local, self.serial)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, AndroidDevice):
            return self.serial == other.serial
        return NotImplemented

    def __hash__(self) -> int:
        return hash(self.serial)

    def __str__(self) -> str:
        return self.serial

    __repr__ = __str__


class DeviceMetadata(object):
    """
    What the registry knows about a device: the container it belongs to and
    the names of the deployments installed on it, in installation order.
    """

    def __init__(self, container_qualifier: Optional[str] = None,
                 deployment_names: Iterable[str] = ()):
        self.container_qualifier = container_qualifier
        self._deployment_names: Dict[str, None] = OrderedDict((n, None) for n in deployment_names)

    @property
    def deployment_names(self) -> List[str]:
        return list(self._deployment_names)

    def add_deployment_name(self, name: str) -> None:
        self._deployment_names[name] = None

    def remove_deployment_name(self, name: str) -> None:
        self._deployment_names.pop(name, None)

    def __repr__(self) -> str:
        return 'DeviceMetadata(container_qualifier={!r}, deployment_names={!r})'.format(
            self.container_qualifier, self.deployment_names)


class DeviceRegistry(object):
    """
    Devices registered for one container lifetime, keyed by device handle.
    Not meant to be shared between containers.
    """

    def __init__(self):
        self._devices: 'OrderedDict[AndroidDevice, DeviceMetadata]' = OrderedDict()

    def put(self, device: AndroidDevice, metadata: Optional[DeviceMetadata] = None) -> None:
        if device is None:
            raise ValueError('Device to register must not be None')
        self._devices[device] = metadata if metadata is not None else DeviceMetadata()
        logger.debug('Registered device %s (%s)', device, self._devices[device])

    def remove(self, device: AndroidDevice) -> None:
        self._devices.pop(device, None)

    def remove_by_container_qualifier(self, qualifier: str) -> None:
        doomed = [device for device, metadata in self._devices.items()
                  if metadata.container_qualifier == qualifier]
        for device in doomed:
            del self._devices[device]

    def contains(self, device: AndroidDevice) -> bool:
        return device in self._devices

    def size(self) -> int:
        return len(self._devices)

    def get_metadata(self, device: AndroidDevice) -> Optional[DeviceMetadata]:
        return self._devices.get(device)

    def get_single(self) -> AndroidDevice:
        """
        Return the only registered device.

        :raises DeviceSelectionError: Unless exactly one device is registered.
        """
        if len(self._devices) != 1:
            message = 'Expected exactly one registered device, found {}; ' \
                      'select a device by container qualifier or deployment name'
            raise DeviceSelectionError(message.format(len(self._devices)))
        return next(iter(self._devices))

    def get_by_container_qualifier(self, qualifier: str) -> Optional[AndroidDevice]:
        for device, metadata in self._devices.items():
            if metadata.container_qualifier == qualifier:
                return device
        return None

    def get_by_deployment_name(self, name: str) -> Optional[AndroidDevice]:
        for device, metadata in self._devices.items():
            if name in metadata.deployment_names:
                return device
        return None

    def add_deployment_for_device(self, device: AndroidDevice, deployment_name: str) -> None:
        """
        :raises DeviceSelectionError: If ``device`` is not registered.
        """
        metadata = self._devices.get(device)
        if metadata is None:
            raise DeviceSelectionError('Device {} is not registered, unable to add deployment "{}"'
                                       .format(device, deployment_name))
        metadata.add_deployment_name(deployment_name)

    def __len__(self) -> int:
        return self.size()

    def __iter__(self) -> Iterator[AndroidDevice]:
        return iter(list(self._devices))

    def __contains__(self, device: object) -> bool:
        return device in self._devices

    def __str__(self) -> str:
        return '\n'.join('{}: {!r}'.format(d, m) for d, m in self._devices.items())
