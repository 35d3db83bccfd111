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
Rebuilding of the generic Selendroid server so that it instruments one
particular application package.

The server's own manifest cannot be edited in place because it is stored in
binary form inside the package. Instead, a textual copy of it bundled with
droidium is patched, compiled into a throwaway package with ``aapt`` and the
compiled manifest is spliced into a copy of the server package.
"""
import os
import pkgutil
import subprocess

from lxml import etree

# pylint: disable=redefined-builtin
from droidium.exception import RebuildError, ResourceError, TimeoutError
from droidium.utils.android import get_aapt, get_android_jar
from droidium.utils.identifier import ArtifactKind, create_working_directory, get_artifact_path
from droidium.utils.misc import check_output, get_logger, join_command
from droidium.utils.zip import ApkArchive, MANIFEST_ENTRY

from typing import List, Optional, Sequence, TYPE_CHECKING
if TYPE_CHECKING:
    from lxml.etree import _Element

logger = get_logger('droidium.rebuild')

SELENDROID_PACKAGE_NAME = 'package="io.selendroid"'
SELENDROID_TEST_PACKAGE = 'io.selendroid.testapp'
ICON = 'android:icon="@drawable/selenium_icon"'

MANIFEST_TEMPLATE = 'resources/AndroidManifest.xml'
RAW_MANIFEST = 'AndroidManifestToBeReplaced.xml'
FINAL_MANIFEST = 'AndroidManifest.xml'
DUMMY_APK = 'dummy.apk'

ANDROID_NS = 'http://schemas.android.com/apk/res/android'


def replace_lines(lines: Sequence[str], to_replace: str, replacement: str) -> List[str]:
    """
    Replace every literal occurrence of ``to_replace`` in ``lines``.

    An empty ``lines`` gives an empty list.

    :raises ValueError: If ``to_replace`` is empty, or if ``lines`` or
        ``replacement`` is ``None``.
    """
    if not to_replace:
        raise ValueError('The string to be replaced must not be empty')
    if replacement is None:
        raise ValueError('Replacement for "{}" must not be None'.format(to_replace))
    if lines is None:
        raise ValueError('Lines to filter for "{}" must not be None'.format(to_replace))
    return [line.replace(to_replace, replacement) for line in lines]


class ManifestFilter(object):
    """
    Chainable substitutions over the lines of a manifest::

        ManifestFilter(lines).filter('a', 'b').filter('c', '').filtered
    """

    def __init__(self, lines: Sequence[str]):
        self._lines = list(lines)

    def filter(self, to_replace: str, replacement: str) -> 'ManifestFilter':
        self._lines = replace_lines(self._lines, to_replace, replacement)
        return self

    @property
    def filtered(self) -> List[str]:
        return list(self._lines)


def patch_manifest(lines: Sequence[str], server_package: str, application_package: str) -> List[str]:
    """Apply the three substitutions that retarget the server manifest."""
    return (ManifestFilter(lines)
            .filter(SELENDROID_PACKAGE_NAME, 'package="{}"'.format(server_package))
            .filter(SELENDROID_TEST_PACKAGE, application_package)
            .filter(ICON, '')
            .filtered)


def load_manifest_template() -> List[str]:
    """
    :raises ResourceError: If the bundled manifest cannot be read.
    """
    try:
        data = pkgutil.get_data('droidium', MANIFEST_TEMPLATE)
    except OSError as e:
        raise ResourceError('Unable to read bundled {}: {}'.format(MANIFEST_TEMPLATE, e)) from e
    if data is None:
        raise ResourceError('Bundled {} not found'.format(MANIFEST_TEMPLATE))
    return data.decode('utf-8').splitlines()


def check_manifest(path: str, server_package: str, application_package: str) -> None:
    """
    Make sure the patched manifest is well formed and points where it should
    before spending an ``aapt`` run on it.

    :raises RebuildError: If it does not.
    """
    try:
        root: '_Element' = etree.parse(path).getroot()
    except (etree.XMLSyntaxError, OSError) as e:
        raise RebuildError('Patched manifest {} is not valid XML: {}'.format(path, e)) from e
    if root.get('package') != server_package:
        raise RebuildError('Patched manifest {} declares package "{}" instead of "{}"'
                           .format(path, root.get('package'), server_package))
    targets = [el.get('{{{}}}targetPackage'.format(ANDROID_NS))
               for el in root.iter('instrumentation')]
    if application_package not in targets:
        raise RebuildError('Patched manifest {} does not instrument "{}"'
                           .format(path, application_package))


def guess_aapt_version(aapt: str) -> int:
    return 2 if os.path.basename(aapt).startswith('aapt2') else 1


class ManifestRebuilder(object):
    """
    :param working_dir: Directory intermediate and rebuilt packages go to.
    :param aapt: Path to ``aapt`` or ``aapt2``; discovered from the SDK if not given.
    :param aapt_version: 1 or 2, which of the two ``aapt`` is; guessed from
        the file name of an explicit ``aapt`` if not given.
    :param android_jar: Platform library the manifest is compiled against;
        the newest installed platform is used if not given.
    :param timeout: Seconds to wait for the compile step.
    """

    def __init__(self, working_dir: str, aapt: Optional[str] = None,
                 aapt_version: Optional[int] = None, android_jar: Optional[str] = None,
                 timeout: Optional[int] = None):
        self.working_dir = working_dir
        self.timeout = timeout
        self._aapt = aapt
        if aapt_version is None and aapt:
            aapt_version = guess_aapt_version(aapt)
        self._aapt_version = aapt_version
        self._android_jar = android_jar

    @property
    def aapt(self) -> str:
        if self._aapt is None:
            self._aapt, self._aapt_version = get_aapt()
        return self._aapt

    @property
    def aapt_version(self) -> int:
        if self._aapt_version is None:
            self._aapt, self._aapt_version = get_aapt()
        return self._aapt_version

    @property
    def android_jar(self) -> str:
        if self._android_jar is None:
            self._android_jar = get_android_jar()
        return self._android_jar

    def rebuild(self, working_copy: str, server_package: str, application_package: str) -> str:
        """
        Produce a copy of ``working_copy`` whose manifest declares
        ``server_package`` and instruments ``application_package``.

        :param working_copy: Copy of the generic server package.
        :param server_package: Unique package name for the rebuilt server.
        :param application_package: Package of the application under test.
        :returns: Path of the rebuilt, unsigned, server package.
        :raises RebuildError: If any step fails.
        """
        if not working_copy or not os.path.isfile(working_copy):
            raise RebuildError('Server package to rebuild {} does not exist'.format(working_copy))
        if not server_package or not application_package:
            raise RebuildError('Server package name and application package name must not be empty')

        try:
            scratch = create_working_directory(self.working_dir)
        except ResourceError as e:
            raise RebuildError(str(e)) from e
        raw_manifest = os.path.join(scratch, RAW_MANIFEST)
        final_manifest = os.path.join(scratch, FINAL_MANIFEST)
        dummy_apk = os.path.join(scratch, DUMMY_APK)

        try:
            template = load_manifest_template()
        except ResourceError as e:
            raise RebuildError(str(e)) from e
        self._write_lines(raw_manifest, template)

        patched = patch_manifest(self._read_lines(raw_manifest), server_package, application_package)
        self._write_lines(final_manifest, patched)
        check_manifest(final_manifest, server_package, application_package)

        self.compile_manifest(final_manifest, dummy_apk)

        try:
            compiled = ApkArchive(dummy_apk).get(MANIFEST_ENTRY)
            server = ApkArchive(working_copy)
            server.delete(MANIFEST_ENTRY)
            server.replace(MANIFEST_ENTRY, compiled)
            rebuilt = server.export(get_artifact_path(self.working_dir, ArtifactKind.APK))
        except ResourceError as e:
            raise RebuildError('Unable to splice manifest into {}: {}'.format(working_copy, e)) from e
        logger.info('Rebuilt %s as %s instrumenting %s', working_copy, server_package, application_package)
        return rebuilt

    def compile_manifest(self, manifest: str, output: str) -> None:
        """
        Build a package containing only the compiled ``manifest``.

        :raises RebuildError: If ``aapt`` fails, times out or cannot be run.
        """
        if self.aapt_version == 2:
            command = [self.aapt, 'link', '--manifest', manifest,
                       '-I', self.android_jar, '-o', output]
        else:
            command = [self.aapt, 'package', '-f', '-M', manifest,
                       '-I', self.android_jar, '-F', output]
        logger.debug(join_command(command))
        try:
            check_output(command, timeout=self.timeout)
        except subprocess.CalledProcessError as e:
            raise RebuildError('Unable to compile {}'.format(manifest), command=command,
                               output='{}\n{}'.format(e.output, e.stderr)) from e
        except TimeoutError as e:
            raise RebuildError('Compiling {} timed out after {}s'.format(manifest, self.timeout),
                               command=command, output=e.output) from e
        except OSError as e:
            raise RebuildError('Unable to run {}: {}'.format(command[0], e), command=command) from e
        if not os.path.isfile(output):
            raise RebuildError('{} did not produce {}'.format(command[0], output), command=command)

    @staticmethod
    def _read_lines(path: str) -> List[str]:
        try:
            with open(path, 'r', encoding='utf-8') as fh:
                return fh.read().splitlines()
        except OSError as e:
            raise RebuildError('Unable to read {}: {}'.format(path, e)) from e

    @staticmethod
    def _write_lines(path: str, lines: Sequence[str]) -> None:
        try:
            with open(path, 'w', encoding='utf-8') as fh:
                fh.write('\n'.join(lines) + '\n')
        except OSError as e:
            raise RebuildError('Unable to write {}: {}'.format(path, e)) from e
