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
Unique names for the temporary artifacts written to the working directory.
"""
import os
import uuid
from enum import Enum

from droidium.exception import ResourceError
from droidium.utils.misc import get_logger

logger = get_logger('droidium.identifier')

# Attempts at a fresh uuid before giving up on a directory
MAX_NAME_ATTEMPTS = 10


class ArtifactKind(Enum):
    """Kinds of generated artifacts."""
    APK = 'apk'
    FILE = 'file'
    DIRECTORY = 'directory'
    MANIFEST = 'manifest'
    KEYSTORE = 'keystore'
    LOG = 'log'

    @property
    def suffix(self) -> str:
        return _SUFFIXES[self]


_SUFFIXES = {
    ArtifactKind.APK: '.apk',
    ArtifactKind.FILE: '',
    ArtifactKind.DIRECTORY: '',
    ArtifactKind.MANIFEST: '.xml',
    ArtifactKind.KEYSTORE: '.keystore',
    ArtifactKind.LOG: '.log',
}


def get_identifier(kind: ArtifactKind = ArtifactKind.FILE) -> str:
    """
    Return a new collision-resistant name for an artifact of ``kind``.

    :raises ValueError: If ``kind`` is not an :class:`ArtifactKind`.
    """
    if not isinstance(kind, ArtifactKind):
        raise ValueError('Unknown artifact kind: {!r}'.format(kind))
    return uuid.uuid4().hex + kind.suffix


def get_random_apk_file_name() -> str:
    return get_identifier(ArtifactKind.APK)


def get_artifact_path(parent: str, kind: ArtifactKind) -> str:
    """Return a path under ``parent`` for a new artifact. Nothing is created."""
    return os.path.join(parent, get_identifier(kind))


def create_random_file(parent: str, kind: ArtifactKind = ArtifactKind.FILE) -> str:
    """
    Create an empty, uniquely named file under ``parent``.

    :returns: The path of the new file.
    :raises ResourceError: If the file cannot be created.
    """
    while True:
        path = get_artifact_path(parent, kind)
        try:
            with open(path, 'x'):
                pass
        except FileExistsError:
            continue
        except OSError as e:
            raise ResourceError('Unable to create file in {}: {}'.format(parent, e)) from e
        return path


def create_working_directory(parent: str) -> str:
    """
    Create a fresh, uniquely named directory under ``parent``. A name that is
    already taken is retried with a new one.

    :returns: The path of the new directory.
    :raises ResourceError: If ``parent`` is not writable or no free name was found.
    """
    for _ in range(MAX_NAME_ATTEMPTS):
        path = get_artifact_path(parent, ArtifactKind.DIRECTORY)
        try:
            os.mkdir(path)
        except FileExistsError:
            continue
        except OSError as e:
            raise ResourceError('Unable to create working directory in {}: {}'.format(parent, e)) from e
        logger.debug('Created working directory %s', path)
        return path
    raise ResourceError('Unable to find a free directory name in {}'.format(parent))
