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
Exceptions raised by droidium.

Errors fall into five families: configuration, resource, external process,
state and timeout. Callers that only care about one family can catch its base
class; everything derives from :class:`DroidiumError`.
"""
from typing import Optional, Sequence, Union


class DroidiumError(Exception):
    """Base class for all droidium errors."""

    @property
    def message(self) -> str:
        if self.args:
            return self.args[0]
        return str(self)


class ConfigurationError(DroidiumError):
    """Invalid or missing configuration, detected before any tool is run."""
    pass


class InvalidInstrumentationConfigurationError(ConfigurationError):
    """An instrumentation port is unset, malformed or outside the TCP range."""
    pass


class InstrumentationConflictError(ConfigurationError):
    """Two deployments declare instrumentation on the same port."""

    def __init__(self, port: int, first: str, second: str):
        message = 'Deployments "{}" and "{}" both use instrumentation port {}'
        super(InstrumentationConflictError, self).__init__(message.format(first, second, port))
        self.port = port
        self.deployments = (first, second)


class ResourceError(DroidiumError):
    """A file or bundled resource could not be read or written."""
    pass


class HostError(ResourceError):
    """A tool required on the host could not be located."""
    pass


class ExecutionError(DroidiumError):
    """An external command failed."""

    def __init__(self, message: str, command: Optional[Union[str, Sequence[str]]] = None,
                 output: Optional[str] = None):
        super(ExecutionError, self).__init__(message)
        self.command = command
        self.output = output

    def __str__(self):
        parts = [self.message]
        if self.command is not None:
            command = self.command if isinstance(self.command, str) else ' '.join(self.command)
            parts.append('COMMAND: {}'.format(command))
        if self.output:
            parts.append('OUTPUT: {}'.format(self.output.strip()))
        return '\n'.join(parts)


class KeyStoreCreationError(ExecutionError):
    """The key generation tool failed to create a keystore."""
    pass


class SigningError(ExecutionError):
    """A package could not be signed or its signature could not be stripped."""
    pass


class RebuildError(ExecutionError):
    """The instrumentation server package could not be rebuilt."""
    pass


class StateError(DroidiumError):
    """An operation was requested in a state that does not allow it."""
    pass


class EmptyRegistryError(StateError):
    pass


class DeviceSelectionError(StateError):
    pass


class DriverInstanceNotFoundError(StateError):
    """No driver controls an activity matching the query."""
    pass


class NotUniqueDriverInstanceError(StateError):
    """More than one driver controls an activity matching the query."""
    pass


# pylint: disable=redefined-builtin
class TimeoutError(DroidiumError):
    """
    Raised when a command does not finish in time, or when a bounded wait gives
    up. ``attempts`` is the number of times the command was issued; it is
    ``None`` for plain process timeouts.
    """

    def __init__(self, command: Union[str, Sequence[str]], output: Optional[str] = None,
                 attempts: Optional[int] = None):
        if not isinstance(command, str):
            command = ' '.join(str(c) for c in command)
        if attempts is None:
            message = 'Timed out: {}'.format(command)
        else:
            message = 'Timed out after {} attempts: {}'.format(attempts, command)
        super(TimeoutError, self).__init__(message)
        self.command = command
        self.output = output
        self.attempts = attempts

    def __str__(self):
        if self.output:
            return '\n'.join([self.message, 'OUTPUT: {}'.format(self.output.strip())])
        return self.message
