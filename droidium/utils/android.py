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
Utility functions for working with the Android SDK and Java tools on the host,
and with devices through adb.
"""
# pylint: disable=E1103
import functools
import glob
import os
import re
import subprocess

from shlex import quote

from droidium.exception import HostError, ExecutionError
from droidium.utils.misc import check_output, which, get_logger, memoized

from typing import (Optional, cast, Tuple, Union, List, Dict, Sequence)
from typing_extensions import Required, TypedDict, Literal

logger = get_logger('droidium.android')

AAPT_BADGING_OUTPUT = re.compile(r"no dump ((file)|(apk)) specified", re.IGNORECASE)
PLATFORM_DIR_REGEX = re.compile(r'android-(?P<level>\d+)$')

ACTIVITY_ELEMENT_REGEX = re.compile(r'^\s*E: activity(-alias)?(\s|$)')
ELEMENT_REGEX = re.compile(r'^\s*E: ')
NAME_ATTRIBUTE_REGEX = re.compile(r'^\s*A: (?:\S*:)?name(?:\(0x[0-9a-fA-F]+\))?="(?P<name>[^"]+)"')
COMPONENT_REGEX = re.compile(r'^[\w.]+/[\w.$]+$')


class BuildToolsInfo(TypedDict, total=False):
    """
    Typed dictionary capturing build tools info.

    :param build_tools: The path to the build-tools directory.
    :param aapt: Path to the aapt or aapt2 binary.
    :param aapt_version: Integer 1 or 2 indicating which aapt is used.
    :param android_jar: Path to the newest installed platform ``android.jar``.
    """
    build_tools: Required[Optional[str]]
    aapt: Required[Optional[str]]
    aapt_version: Required[Optional[int]]
    android_jar: Required[Optional[str]]


class Android_Env_Type(TypedDict, total=False):
    """
    Typed dictionary representing environment paths for Android tools.

    :param android_home: ANDROID_HOME path, if set.
    :param platform_tools: Path to the 'platform-tools' directory containing adb.
    :param adb: Path to the 'adb' executable.
    :param build_tools: Path to the 'build-tools' directory if available.
    :param aapt: Path to aapt or aapt2, if found.
    :param aapt_version: 1 or 2 indicating which aapt variant is used.
    :param android_jar: Platform library used to compile manifests.
    """
    android_home: Required[Optional[str]]
    platform_tools: Required[str]
    adb: Required[str]
    build_tools: Required[Optional[str]]
    aapt: Required[Optional[str]]
    aapt_version: Required[Optional[int]]
    android_jar: Required[Optional[str]]


Android_Env_TypeKeys = Union[Literal['android_home'],
                             Literal['platform_tools'],
                             Literal['adb'],
                             Literal['build_tools'],
                             Literal['aapt'],
                             Literal['aapt_version'],
                             Literal['android_jar']]

JavaToolName = Union[Literal['jarsigner'], Literal['keytool']]


def _run(command: List[str], timeout: Optional[int] = None) -> str:
    """
    Execute a host tool (e.g., aapt) and return its output as a string.

    :param command: List of command arguments to run.
    :returns: stdout and stderr of the command, concatenated.
    :raises ExecutionError: If the command fails or returns a nonzero exit code.
    """
    try:
        output, error = check_output(command, timeout=timeout)
    except subprocess.CalledProcessError as e:
        raise ExecutionError('Error while running "{}"'.format(command[0]),
                             command=command, output='{}\n{}'.format(e.output, e.stderr)) from e
    except OSError as e:
        raise HostError('Unable to run {}: {}'.format(command[0], e)) from e
    return output + error


@memoized
def dump_badging(aapt: str, apk_path: str) -> List[str]:
    """Return the lines of ``aapt dump badging`` for ``apk_path``."""
    return _run([aapt, 'dump', 'badging', apk_path]).splitlines()


def parse_badging_property(lines: Sequence[str], name: str, sub_name: str) -> str:
    """
    Extract ``sub_name`` from the badging line introduced by ``name``, e.g.
    ``parse_badging_property(lines, 'package', 'name')``.

    :returns: The value, or an empty string if it is not present.
    """
    line_regex = re.compile(r'^(\s*){}(:?)(.*)$'.format(re.escape(name)))
    value_regex = re.compile(r'''(?<![\w-]){}=['"]([^'"]+)['"]'''.format(re.escape(sub_name)))
    for line in lines:
        if not line_regex.match(line):
            continue
        match = value_regex.search(line)
        if match:
            return match.group(1)
    logger.error('Unable to get %s %s from badging output', name, sub_name)
    return ''


def expand_activity_name(package: str, activity: str) -> str:
    """
    Turn a manifest activity name into a fully qualified one: ``.Main`` and
    ``Main`` are resolved against ``package``.
    """
    if activity.startswith('.'):
        return package + activity
    if '.' not in activity:
        return '{}.{}'.format(package, activity)
    return activity


def parse_activities(xmltree: str, package: str) -> List[str]:
    """
    Collect the fully qualified names of activities declared in the output of
    ``aapt dump xmltree <apk> AndroidManifest.xml``.
    """
    activities: List[str] = []
    in_activity = False
    for line in xmltree.splitlines():
        if ACTIVITY_ELEMENT_REGEX.match(line):
            in_activity = True
            continue
        if not in_activity:
            continue
        if ELEMENT_REGEX.match(line):
            # Element without a name, e.g. malformed manifest
            in_activity = False
            continue
        match = NAME_ATTRIBUTE_REGEX.match(line)
        if match:
            activities.append(expand_activity_name(package, match.group('name')))
            in_activity = False
    return activities


class ApkInfo(object):
    """
    Metadata about an APK: package name, version, launchable activity and
    declared activities. The parsing relies on the 'aapt' or 'aapt2' command
    from Android build-tools.

    :param path: Optional path to the APK file on the host. If provided, it is
        immediately parsed.
    """
    permission_regex = re.compile(r"name='(?P<permission>[^']+)'")

    def __init__(self, path: Optional[str] = None, aapt: Optional[str] = None,
                 aapt_version: Optional[int] = None):
        self.path = path
        self.package: Optional[str] = None
        self.activity: Optional[str] = None
        self.label: Optional[str] = None
        self.version_name: Optional[str] = None
        self.version_code: Optional[str] = None
        self.permissions: List[str] = []
        self._activities: Optional[List[str]] = None
        self._aapt: str = aapt or cast(str, _ANDROID_ENV.get_env('aapt'))
        self._aapt_version: int = aapt_version or (1 if aapt else cast(int, _ANDROID_ENV.get_env('aapt_version')))

        if path:
            self.parse(path)

    def parse(self, apk_path: str) -> None:
        """
        Parse the given APK file with the aapt or aapt2 utility.

        :param apk_path: The path to the APK file on the host system.
        :raises ExecutionError: If aapt fails to run or returns an error message.
        """
        lines = dump_badging(self._aapt, apk_path)
        self.package = parse_badging_property(lines, 'package', 'name') or None
        self.version_code = parse_badging_property(lines, 'package', 'versionCode') or None
        self.version_name = parse_badging_property(lines, 'package', 'versionName') or None
        launchable = parse_badging_property(lines, 'launchable-activity', 'name')
        self.activity = launchable or None
        self.permissions = []
        for line in lines:
            if line.startswith('application-label:'):
                self.label = line.split(':', 1)[1].strip().replace('\'', '')
            elif line.startswith('uses-permission:'):
                match = self.permission_regex.search(line)
                if match:
                    self.permissions.append(match.group('permission'))
        self.path = apk_path
        self._activities = None

    @property
    def activities(self) -> List[str]:
        """
        Return the fully qualified names of activities declared in this APK.
        """
        if self._activities is None:
            cmd: List[str] = [self._aapt, 'dump', 'xmltree', self.path if self.path else '']
            if self._aapt_version == 2:
                cmd += ['--file']
            cmd += ['AndroidManifest.xml']
            self._activities = parse_activities(_run(cmd), self.package or '')
        return self._activities


def get_activity_component(activity: str) -> str:
    """
    Convert an activity name into the ``package/class`` component form that
    ``am start -n`` expects.

    ``com.example.Main`` becomes ``com.example/.Main``; names already in
    component form (``com.example/.Main``, ``com.example/other.Main``) are
    returned unchanged.

    :raises ValueError: If the name has no package part.
    """
    if '/' in activity:
        if not COMPONENT_REGEX.match(activity):
            raise ValueError('Invalid activity component: "{}"'.format(activity))
        return activity
    package, sep, name = activity.rpartition('.')
    if not sep or not package or not name:
        raise ValueError('Activity name "{}" is not fully qualified'.format(activity))
    return '{}/.{}'.format(package, name)


def get_activity_package(activity: str) -> str:
    """
    Return the package that owns a fully qualified activity name.

    :raises ValueError: If the name has no package part.
    """
    if '/' in activity:
        return activity.split('/', 1)[0]
    package, sep, _ = activity.rpartition('.')
    if not sep or not package:
        raise ValueError('Activity name "{}" is not fully qualified'.format(activity))
    return package


def _get_adb_parts(command: Sequence[str], device: Optional[str] = None,
                   adb_server: Optional[str] = None, adb_port: Optional[int] = None
                   ) -> Tuple[List[str], Dict[str, str]]:
    """
    Build the argument list of an adb invocation, plus environment variables.

    :param command: The adb arguments, like ``('shell', 'ls')``.
    :param device: The device serial or None if no device param used.
    :param adb_server: Host/IP of custom adb server if set.
    :param adb_port: Port of custom adb server if set.
    :returns: The argument list and a dict of env updates.
    """
    parts: List[str] = [
        cast(str, _ANDROID_ENV.get_env('adb')),
        *(('-H', adb_server) if adb_server is not None else ()),
        *(('-P', str(adb_port)) if adb_port is not None else ()),
        *(('-s', device) if device is not None else ()),
        *command,
    ]
    env: Dict[str, str] = {'LC_ALL': 'C'}
    return (parts, env)


def get_adb_command(device: Optional[str], command: Sequence[str], adb_server: Optional[str] = None,
                    adb_port: Optional[int] = None) -> List[str]:
    """
    Build an 'adb' argument list that can be passed to the process helpers.
    """
    parts, _ = _get_adb_parts(command, device, adb_server, adb_port)
    return parts


def adb_command(device: Optional[str], command: Sequence[str], timeout: Optional[int] = None,
                adb_server: Optional[str] = None, adb_port: Optional[int] = None) -> str:
    """
    Build and run an 'adb' command synchronously, returning its output.

    :param device: Device serial, or None if only one device is expected.
    :param command: adb arguments, e.g. ``['install', '-r', 'app.apk']``.
    :param timeout: Seconds to wait for completion (None for no limit).
    :param adb_server: Custom ADB server host if needed.
    :param adb_port: Custom ADB server port if needed.
    :returns: The command's output as a decoded string.
    :raises ExecutionError: If the command fails or returns non-zero.
    """
    parts, env = _get_adb_parts(command, device, adb_server, adb_port)
    logger.debug(' '.join(quote(p) for p in parts))
    try:
        output, _ = check_output(parts, timeout, env={**os.environ, **env})
    except subprocess.CalledProcessError as e:
        raise ExecutionError('adb {} failed on {}'.format(command[0], device or 'default device'),
                             command=parts, output='{}\n{}'.format(e.output, e.stderr)) from e
    return output


class _AndroidEnvironment:
    # Make the initialization lazy so that we don't trigger an exception if the
    # user imports the module (directly or indirectly) without actually using
    # anything from it
    """
    Lazy-initialized environment data for Android tools (adb, aapt, etc.),
    constructed from ANDROID_HOME or by scanning the system PATH.
    """
    @property
    @functools.lru_cache(maxsize=None)
    def env(self) -> Android_Env_Type:
        """
        :returns: The discovered Android environment mapping with keys like 'adb', 'aapt', etc.
        :raises HostError: If we cannot find a suitable ANDROID_HOME or 'adb' in PATH.
        """
        android_home: Optional[str] = os.getenv('ANDROID_HOME')
        if android_home:
            env = self._from_android_home(android_home)
        else:
            env = self._from_adb()

        return env

    def get_env(self, name: Android_Env_TypeKeys) -> Optional[Union[str, int]]:
        """
        Retrieve a specific environment field, such as 'adb', 'aapt', or 'android_jar'.

        :param name: Name of the environment key.
        :returns: The value if found, else None.
        """
        return self.env[name]

    @classmethod
    def _from_android_home(cls, android_home: str) -> Android_Env_Type:
        logger.debug('Using ANDROID_HOME from the environment.')
        platform_tools = os.path.join(android_home, 'platform-tools')

        return cast(Android_Env_Type, {
            'android_home': android_home,
            'platform_tools': platform_tools,
            'adb': os.path.join(platform_tools, 'adb'),
            **cls._init_common(android_home)
        })

    @classmethod
    def _from_adb(cls) -> Android_Env_Type:
        """
        Attempt to derive environment info by locating 'adb' on the system PATH.

        :raises HostError: If 'adb' is not found in PATH.
        """
        adb_path = which('adb')
        if adb_path:
            logger.debug('Discovering ANDROID_HOME from adb path.')
            platform_tools = os.path.dirname(adb_path)
            android_home = os.path.dirname(platform_tools)

            return cast(Android_Env_Type, {
                'android_home': android_home,
                'platform_tools': platform_tools,
                'adb': adb_path,
                **cls._init_common(android_home)
            })
        else:
            raise HostError('ANDROID_HOME is not set and adb is not in PATH. '
                            'Have you installed Android SDK?')

    @classmethod
    def _init_common(cls, android_home: str) -> BuildToolsInfo:
        logger.debug(f'ANDROID_HOME: {android_home}')
        build_tools = cls._discover_build_tools(android_home)
        return cast(BuildToolsInfo, {
            'build_tools': build_tools,
            'android_jar': cls._discover_android_jar(android_home),
            **cls._discover_aapt(build_tools)
        })

    @staticmethod
    def _discover_build_tools(android_home: str) -> Optional[str]:
        build_tools = os.path.join(android_home, 'build-tools')
        if os.path.isdir(build_tools):
            return build_tools
        else:
            return None

    @staticmethod
    def _discover_android_jar(android_home: str) -> Optional[str]:
        """
        Find the ``android.jar`` of the highest installed platform level.

        :returns: Its path, or None when no platform is installed.
        """
        candidates: List[Tuple[int, str]] = []
        for path in glob.glob(os.path.join(android_home, 'platforms', 'android-*', 'android.jar')):
            match = PLATFORM_DIR_REGEX.search(os.path.dirname(path))
            if match:
                candidates.append((int(match.group('level')), path))
        if not candidates:
            return None
        return max(candidates)[1]

    @staticmethod
    def _check_supported_aapt2(binary: str) -> bool:
        """
        Check if a given 'aapt2' binary supports 'dump badging'.

        :param binary: Path to the aapt2 binary.
        :returns: True if the binary appears to support the 'badging' command, else False.
        """
        # The version argument of aapt2 does not tell versions with and
        # without badging support apart; ask for badging without an apk and
        # look for the expected complaint instead.
        result = subprocess.run([str(binary), 'dump', 'badging'],
                                stdout=subprocess.DEVNULL, stderr=subprocess.PIPE,
                                universal_newlines=True)
        supported = bool(AAPT_BADGING_OUTPUT.search(result.stderr))
        msg: str = 'Found a {} aapt2 binary at: {}'
        logger.debug(msg.format('supported' if supported else 'unsupported', binary))
        return supported

    @classmethod
    def _discover_aapt(cls, build_tools: Optional[str]) -> Dict[str, Optional[Union[str, int]]]:
        """
        Find 'aapt' or 'aapt2' in build-tools (or PATH fallback). aapt is
        preferred since it can compile a manifest on its own with ``package``.

        :raises HostError: If neither aapt nor aapt2 is found.
        """
        if build_tools:

            def find_aapt(version: str) -> Tuple[Optional[int], Optional[str]]:
                path: str = os.path.join(build_tools, version, 'aapt')
                if os.path.isfile(path):
                    return (1, path)
                else:
                    return (None, None)

            def find_aapt2(version: str) -> Tuple[Optional[int], Optional[str]]:
                path = os.path.join(build_tools, version, 'aapt2')
                if os.path.isfile(path) and cls._check_supported_aapt2(path):
                    return (2, path)
                else:
                    return (None, None)

            versions: List[str] = os.listdir(build_tools)
            found = (
                (version, finder(version))
                for version in reversed(sorted(versions))
                for finder in (find_aapt, find_aapt2)
            )

            for version, (aapt_version, aapt_path) in found:
                if aapt_path:
                    logger.debug(f'Using {aapt_path} for version {version}')
                    return dict(
                        aapt=aapt_path,
                        aapt_version=aapt_version,
                    )

        aapt_path = which('aapt')
        aapt2_path: Optional[str] = which('aapt2')
        if aapt_path:
            return dict(
                aapt=aapt_path,
                aapt_version=1,
            )
        elif aapt2_path and cls._check_supported_aapt2(aapt2_path):
            return dict(
                aapt=aapt2_path,
                aapt_version=2,
            )
        else:
            raise HostError('aapt/aapt2 not found. Please make sure it is available in PATH '
                            'or at least one Android build-tools version is installed')


@memoized
def get_java_tool(name: JavaToolName) -> str:
    """
    Locate a JDK tool, looking in ``$JAVA_HOME/bin`` first and then in PATH.

    :raises HostError: If the tool cannot be found.
    """
    java_home = os.getenv('JAVA_HOME')
    if java_home:
        path = os.path.join(java_home, 'bin', name)
        if os.path.isfile(path):
            return path
    path_from_env = which(name)
    if path_from_env:
        return path_from_env
    raise HostError('{} not found. Set JAVA_HOME or add it to PATH.'.format(name))


def get_android_jar() -> str:
    """
    :raises HostError: If no Android platform is installed.
    """
    android_jar = _ANDROID_ENV.get_env('android_jar')
    if not android_jar:
        raise HostError('No android.jar found under {}/platforms. '
                        'Install at least one Android platform.'.format(_ANDROID_ENV.get_env('android_home')))
    return cast(str, android_jar)


def get_aapt() -> Tuple[str, int]:
    return (cast(str, _ANDROID_ENV.get_env('aapt')),
            cast(int, _ANDROID_ENV.get_env('aapt_version')))


_ANDROID_ENV = _AndroidEnvironment()
