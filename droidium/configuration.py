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
Configuration values consumed by droidium. Values can be given directly or
loaded from a YAML file; either way they are checked with ``validate()``
before any external tool runs.
"""
import os
import tempfile

from droidium.exception import ConfigurationError
from droidium.utils.misc import load_struct_from_yaml, LoadSyntaxError, get_logger

from typing import Any, Dict, Mapping, Optional, TYPE_CHECKING
if TYPE_CHECKING:
    from droidium.utils.annotation_helpers import UserConfiguration, UserSigningSettings

logger = get_logger('droidium.configuration')

DEFAULT_KEYSTORE = os.path.join(os.path.expanduser('~'), '.android', 'debug.keystore')
DEFAULT_SERVER_APK = 'selendroid-server.apk'
DEFAULT_SERVER_START_ATTEMPTS = 5


class SigningConfiguration(object):
    """
    Keystore and algorithms used to sign packages. The defaults match the
    Android debug keystore.
    """

    def __init__(self, keystore: Optional[str] = None, storepass: str = 'android',
                 keypass: str = 'android', alias: str = 'androiddebugkey',
                 sigalg: str = 'MD5withRSA', digestalg: str = 'SHA1', keyalg: str = 'RSA'):
        self.keystore = keystore or DEFAULT_KEYSTORE
        self.storepass = storepass
        self.keypass = keypass
        self.alias = alias
        self.sigalg = sigalg
        self.digestalg = digestalg
        self.keyalg = keyalg

    def validate(self) -> None:
        for name in ('keystore', 'storepass', 'keypass', 'alias', 'sigalg', 'digestalg', 'keyalg'):
            if not getattr(self, name):
                raise ConfigurationError('Signing parameter "{}" must not be empty'.format(name))

    def with_keystore(self, keystore: str) -> 'SigningConfiguration':
        return SigningConfiguration(keystore=keystore, storepass=self.storepass,
                                    keypass=self.keypass, alias=self.alias, sigalg=self.sigalg,
                                    digestalg=self.digestalg, keyalg=self.keyalg)

    @classmethod
    def from_dict(cls, values: 'UserSigningSettings') -> 'SigningConfiguration':
        return cls(**_check_keys(cls.__name__, values, SIGNING_KEYS))

    def __eq__(self, other: object) -> bool:
        if isinstance(other, SigningConfiguration):
            return vars(self) == vars(other)
        return NotImplemented

    def __repr__(self) -> str:
        return 'SigningConfiguration(keystore={!r}, alias={!r})'.format(self.keystore, self.alias)


SIGNING_KEYS = frozenset(['keystore', 'storepass', 'keypass', 'alias', 'sigalg',
                          'digestalg', 'keyalg'])
CONFIGURATION_KEYS = frozenset(['server_apk', 'tmp_dir', 'remove_tmp_dir', 'signing', 'serial',
                                'container_qualifier', 'adb_server', 'adb_port', 'command_timeout',
                                'server_start_attempts'])


def _check_keys(owner: str, values: Mapping[str, Any], allowed: frozenset) -> Dict[str, Any]:
    unknown = sorted(set(values) - allowed)
    if unknown:
        raise ConfigurationError('Unknown {} parameter(s): {}'.format(owner, ', '.join(unknown)))
    return dict(values)


class DroidiumConfiguration(object):
    """
    :param server_apk: Path to the generic instrumentation server package.
    :param tmp_dir: Directory the per-container working directory is created in.
    :param remove_tmp_dir: Delete the working directory when the container stops.
    :param signing: Keystore and algorithms used for re-signing.
    :param serial: Serial of the device to use.
    :param container_qualifier: Qualifier the device is registered under.
    :param command_timeout: Timeout in seconds for signing and rebuild tools.
    :param server_start_attempts: Status polls before the instrumentation
        server is considered dead.
    """

    def __init__(self, server_apk: str = DEFAULT_SERVER_APK, tmp_dir: Optional[str] = None,
                 remove_tmp_dir: bool = True, signing: Optional[SigningConfiguration] = None,
                 serial: Optional[str] = None, container_qualifier: Optional[str] = None,
                 adb_server: Optional[str] = None, adb_port: Optional[int] = None,
                 command_timeout: Optional[int] = None,
                 server_start_attempts: int = DEFAULT_SERVER_START_ATTEMPTS):
        self.server_apk = server_apk
        self.tmp_dir = tmp_dir or tempfile.gettempdir()
        self.remove_tmp_dir = remove_tmp_dir
        self.signing = signing or SigningConfiguration()
        self.serial = serial
        self.container_qualifier = container_qualifier
        self.adb_server = adb_server
        self.adb_port = adb_port
        self.command_timeout = command_timeout
        self.server_start_attempts = server_start_attempts

    def validate(self) -> None:
        """
        :raises ConfigurationError: On the first invalid value found.
        """
        if not self.server_apk or not os.path.isfile(self.server_apk):
            raise ConfigurationError('Instrumentation server package "{}" does not exist'
                                     .format(self.server_apk))
        if not os.path.isdir(self.tmp_dir) or not os.access(self.tmp_dir, os.W_OK):
            raise ConfigurationError('Temporary directory "{}" is not a writable directory'
                                     .format(self.tmp_dir))
        if self.command_timeout is not None and self.command_timeout <= 0:
            raise ConfigurationError('command_timeout must be positive, got {}'
                                     .format(self.command_timeout))
        if self.server_start_attempts < 1:
            raise ConfigurationError('server_start_attempts must be at least 1, got {}'
                                     .format(self.server_start_attempts))
        self.signing.validate()

    @classmethod
    def from_dict(cls, values: 'UserConfiguration') -> 'DroidiumConfiguration':
        params = _check_keys(cls.__name__, values, CONFIGURATION_KEYS)
        signing = params.pop('signing', None)
        if signing is not None:
            params['signing'] = SigningConfiguration.from_dict(signing)
        return cls(**params)

    @classmethod
    def from_yaml(cls, filepath: str) -> 'DroidiumConfiguration':
        """
        Load a configuration from a YAML mapping, e.g.::

            server_apk: /opt/selendroid/selendroid-server.apk
            remove_tmp_dir: false
            signing:
              keystore: /home/user/release.keystore
              alias: release

        :raises ConfigurationError: If the file is not valid YAML or has
            unknown keys.
        """
        try:
            values = load_struct_from_yaml(filepath)
        except LoadSyntaxError as e:
            raise ConfigurationError(str(e)) from e
        except OSError as e:
            raise ConfigurationError('Unable to read configuration {}: {}'.format(filepath, e)) from e
        if values is None:
            values = {}
        if not isinstance(values, dict):
            raise ConfigurationError('{} must contain a mapping'.format(filepath))
        logger.debug('Loaded configuration from %s', filepath)
        return cls.from_dict(values)
