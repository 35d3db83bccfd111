#    Copyright 2017 ARM Limited
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

import re
import zipfile
from collections import OrderedDict

from droidium.exception import ResourceError
from droidium.utils.misc import get_logger

from typing import List, Optional, Tuple, TYPE_CHECKING
if TYPE_CHECKING:
    from zipfile import ZipInfo

logger = get_logger('droidium.zip')

MANIFEST_ENTRY = 'AndroidManifest.xml'
SIGNATURE_ENTRY_REGEX = re.compile(r'^META-INF/(MANIFEST\.MF|[^/]+\.(SF|RSA|DSA|EC)|SIG-[^/]+)$',
                                   re.IGNORECASE)


def is_signature_entry(name: str) -> bool:
    """Return ``True`` if ``name`` is part of a JAR/APK v1 signature."""
    return bool(SIGNATURE_ENTRY_REGEX.match(name))


class ApkArchive(object):
    '''
    Editable in-memory view of a ZIP based package. Entries keep their original
    order and compression; edits only reach the disk through :meth:`export`.

    parameters:
        :path: path to an existing archive.
    '''

    def __init__(self, path: str):
        self.path = path
        self._entries: 'OrderedDict[str, Tuple[ZipInfo, bytes]]' = OrderedDict()
        try:
            with zipfile.ZipFile(path, 'r') as zfh:
                for info in zfh.infolist():
                    self._entries[info.filename] = (info, zfh.read(info))
        except (OSError, zipfile.BadZipFile) as e:
            raise ResourceError('Unable to read archive {}: {}'.format(path, e)) from e

    def names(self) -> List[str]:
        return list(self._entries)

    def contains(self, name: str) -> bool:
        return name in self._entries

    def __contains__(self, name: str) -> bool:
        return self.contains(name)

    def get(self, name: str) -> bytes:
        try:
            return self._entries[name][1]
        except KeyError:
            raise ResourceError('Entry {} not found in {}'.format(name, self.path)) from None

    def delete(self, name: str) -> int:
        '''
        Delete an entry. A name ending with ``/`` deletes the whole directory.
        Deleting an entry that does not exist is not an error.

        Returns the number of entries removed.
        '''
        if name.endswith('/'):
            doomed = [n for n in self._entries if n.startswith(name)]
        else:
            doomed = [name] if name in self._entries else []
        for entry in doomed:
            del self._entries[entry]
        return len(doomed)

    def replace(self, name: str, data: bytes,
                compress_type: Optional[int] = None) -> None:
        '''
        Set the content of ``name``, adding the entry at the end if it does
        not exist yet.
        '''
        if name in self._entries:
            info = self._entries[name][0]
            if compress_type is not None:
                info.compress_type = compress_type
            self._entries[name] = (info, data)
        else:
            info = zipfile.ZipInfo(name)
            info.compress_type = zipfile.ZIP_DEFLATED if compress_type is None else compress_type
            self._entries[name] = (info, data)

    def strip_signature(self) -> List[str]:
        '''
        Remove every signature related entry. Returns the removed names, an
        archive that was never signed yields an empty list.
        '''
        removed = [n for n in self._entries if is_signature_entry(n)]
        for name in removed:
            del self._entries[name]
        if removed:
            logger.debug('Stripped %s from %s', ', '.join(removed), self.path)
        return removed

    def export(self, target: str) -> str:
        '''
        Write the archive, with all edits applied, to ``target``.
        '''
        try:
            with zipfile.ZipFile(target, 'w') as zfh:
                for info, data in self._entries.values():
                    zfh.writestr(info, data)
        except OSError as e:
            raise ResourceError('Unable to write archive {}: {}'.format(target, e)) from e
        return target
