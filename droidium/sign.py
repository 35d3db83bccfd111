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
Keystore management and package signing.

A single :class:`PackageSigner` signs both application packages and rebuilt
instrumentation servers; what differs between the two is only the
:class:`~droidium.configuration.SigningConfiguration` it is given.
"""
import os
import subprocess
import threading

# pylint: disable=redefined-builtin
from droidium.configuration import SigningConfiguration, DEFAULT_KEYSTORE
from droidium.exception import KeyStoreCreationError, SigningError, TimeoutError, ResourceError
from droidium.utils.android import get_java_tool
from droidium.utils.identifier import ArtifactKind, get_artifact_path
from droidium.utils.misc import check_output, ensure_directory_exists, get_logger, join_command
from droidium.utils.zip import ApkArchive

from typing import List, Optional

logger = get_logger('droidium.sign')

KEYSTORE_DNAME = 'CN=Android,O=Android,C=US'
KEYSTORE_TYPE = 'JKS'
SECRET_OPTIONS = frozenset(['-storepass', '-keypass'])


def mask_secrets(command: List[str]) -> List[str]:
    """Return ``command`` with the values of password options replaced."""
    masked: List[str] = []
    hide_next = False
    for part in command:
        masked.append('****' if hide_next else part)
        hide_next = part in SECRET_OPTIONS
    return masked


def _run_tool(command: List[str], error_class: type, message: str,
              timeout: Optional[int]) -> str:
    masked = mask_secrets(command)
    logger.debug(join_command(masked))
    try:
        output, error = check_output(command, timeout=timeout)
    except subprocess.CalledProcessError as e:
        raise error_class(message, command=masked,
                          output='{}\n{}'.format(e.output, e.stderr)) from e
    except TimeoutError as e:
        raise error_class('{} (timed out after {}s)'.format(message, timeout),
                          command=masked, output=e.output) from e
    except OSError as e:
        raise error_class('{}: {}'.format(message, e), command=masked) from e
    return output + error


class KeyStoreManager(object):
    """
    Finds or creates the keystore packages are signed with.

    :param configuration: Keystore location, alias, passwords and algorithms.
    :param keytool: Path to ``keytool``; looked up in ``JAVA_HOME`` or PATH
        when needed if not given.
    :param timeout: Seconds to wait for ``keytool``.
    """

    def __init__(self, configuration: SigningConfiguration, keytool: Optional[str] = None,
                 timeout: Optional[int] = None):
        self.configuration = configuration
        self.timeout = timeout
        self._keytool = keytool

    @property
    def keytool(self) -> str:
        if self._keytool is None:
            self._keytool = get_java_tool('keytool')
        return self._keytool

    @staticmethod
    def keystore_exists(path: Optional[str]) -> bool:
        """
        ``True`` if ``path`` is a readable file. Never raises.
        """
        if not path:
            return False
        try:
            return os.path.isfile(path) and os.access(path, os.R_OK)
        except (OSError, TypeError, ValueError):
            return False

    def create_keystore(self, path: str) -> str:
        """
        Generate a new keystore at ``path`` with ``keytool``.

        :raises KeyStoreCreationError: If the tool fails or cannot be run.
        """
        ensure_directory_exists(os.path.dirname(os.path.abspath(path)))
        config = self.configuration
        command = [self.keytool, '-genkey', '-v',
                   '-keystore', path,
                   '-storepass', config.storepass,
                   '-alias', config.alias,
                   '-keypass', config.keypass,
                   '-dname', KEYSTORE_DNAME,
                   '-storetype', KEYSTORE_TYPE,
                   '-sigalg', config.sigalg,
                   '-keyalg', config.keyalg]
        _run_tool(command, KeyStoreCreationError,
                  'Unable to create keystore {}'.format(path), self.timeout)
        if not self.keystore_exists(path):
            raise KeyStoreCreationError('keytool did not create keystore {}'.format(path),
                                        command=mask_secrets(command))
        logger.info('Created keystore %s', path)
        return path

    def ensure_keystore(self) -> str:
        """
        Return the keystore to sign with: the configured one, else the
        default debug keystore, which is created if it is missing too.
        """
        configured = self.configuration.keystore
        if self.keystore_exists(configured):
            return configured
        if configured != DEFAULT_KEYSTORE:
            logger.warning('Keystore %s does not exist, falling back to %s',
                           configured, DEFAULT_KEYSTORE)
        if self.keystore_exists(DEFAULT_KEYSTORE):
            return DEFAULT_KEYSTORE
        return self.create_keystore(DEFAULT_KEYSTORE)


class PackageSigner(object):
    """
    Signs packages with ``jarsigner``. Every package produced is written to
    ``working_dir`` under a freshly generated name.

    :param configuration: Signing parameters.
    :param working_dir: Directory intermediate packages are written to.
    :param jarsigner: Path to ``jarsigner``; looked up when needed if not given.
    :param keystore_manager: Provides the keystore. Built from
        ``configuration`` if not given.
    :param timeout: Seconds to wait for ``jarsigner``.
    """

    def __init__(self, configuration: SigningConfiguration, working_dir: str,
                 jarsigner: Optional[str] = None,
                 keystore_manager: Optional[KeyStoreManager] = None,
                 timeout: Optional[int] = None):
        configuration.validate()
        self.configuration = configuration
        self.working_dir = working_dir
        self.timeout = timeout
        self.keystore_manager = keystore_manager or KeyStoreManager(configuration, timeout=timeout)
        self._jarsigner = jarsigner
        self._keystore: Optional[str] = None
        self._lock = threading.Lock()

    @property
    def jarsigner(self) -> str:
        if self._jarsigner is None:
            self._jarsigner = get_java_tool('jarsigner')
        return self._jarsigner

    @property
    def keystore(self) -> str:
        with self._lock:
            if self._keystore is None:
                self._keystore = self.keystore_manager.ensure_keystore()
            return self._keystore

    def sign(self, to_sign: str, signed: str) -> str:
        """
        Sign ``to_sign`` into ``signed``.

        :returns: ``signed``
        :raises KeyStoreCreationError: If no keystore is available.
        :raises SigningError: If ``jarsigner`` fails or cannot be run.
        """
        if not os.path.isfile(to_sign):
            raise SigningError('Package to sign {} does not exist'.format(to_sign))
        config = self.configuration
        command = [self.jarsigner,
                   '-sigalg', config.sigalg,
                   '-digestalg', config.digestalg,
                   '-signedjar', signed,
                   '-storepass', config.storepass,
                   '-keypass', config.keypass,
                   '-keystore', self.keystore,
                   to_sign, config.alias]
        _run_tool(command, SigningError, 'Unable to sign {}'.format(to_sign), self.timeout)
        logger.debug('Signed %s into %s', to_sign, signed)
        return signed

    def resign(self, to_resign: str) -> str:
        """
        Strip every signature entry from ``to_resign`` and sign the result.
        Packages that were never signed are simply signed.

        :returns: Path of the new signed package.
        :raises SigningError: If the package cannot be rewritten or signed.
        """
        unsigned = get_artifact_path(self.working_dir, ArtifactKind.APK)
        try:
            archive = ApkArchive(to_resign)
            archive.strip_signature()
            archive.export(unsigned)
        except ResourceError as e:
            raise SigningError('Unable to strip signature from {}: {}'.format(to_resign, e)) from e
        return self.sign(unsigned, get_artifact_path(self.working_dir, ArtifactKind.APK))
