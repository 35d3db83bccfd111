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

"""Fixtures and fakes shared by the droidium tests."""

import zipfile

import pytest

from droidium.device import PACKAGES_LIST_CMD
from droidium.exception import ExecutionError
from droidium.utils.misc import reset_memo_cache


def write_apk(path, entries):
    """Write a ZIP archive at ``path`` holding ``entries`` (name -> bytes)."""
    with zipfile.ZipFile(str(path), 'w') as zfh:
        for name, data in entries.items():
            zfh.writestr(name, data)
    return str(path)


SIGNED_ENTRIES = {
    'AndroidManifest.xml': b'<binary manifest>',
    'classes.dex': b'dex\n035',
    'res/layout/main.xml': b'<layout/>',
    'META-INF/MANIFEST.MF': b'Manifest-Version: 1.0\n',
    'META-INF/CERT.SF': b'Signature-Version: 1.0\n',
    'META-INF/CERT.RSA': b'\x30\x82',
}


class FakeDevice(object):
    """
    Stand-in for :class:`droidium.device.AndroidDevice` that keeps the
    installed and running packages in memory.

    :param packages_by_path: Package name installed for each host APK path.
    """

    def __init__(self, serial='emulator-5554', packages_by_path=None):
        self.serial = serial
        self.packages_by_path = dict(packages_by_path or {})
        self.installed = set()
        self.running = set()
        self.forwarded = set()
        self.commands = []
        # server package -> application package it starts when instrumented
        self.instrumentation_targets = {}
        self.fail_commands = set()
        # pm uninstall only takes effect after this many package listings
        self.uninstall_delay = 0
        self._pending_removal = {}

    def execute_shell_command(self, command, receiver=None):
        self.commands.append(command)
        if any(command.startswith(prefix) for prefix in self.fail_commands):
            raise ExecutionError('Shell command failed on {}'.format(self.serial), command=command)
        lines = []
        words = command.split()
        if command == PACKAGES_LIST_CMD:
            self._tick_removals()
            lines = ['package:/data/app/{0}.apk={0}'.format(p) for p in sorted(self.installed)]
        elif command.startswith('pm uninstall'):
            self._pending_removal[words[-1]] = self.uninstall_delay
            lines = ['Success']
        elif command.startswith('am instrument'):
            target = self.instrumentation_targets.get(words[-1].split('/')[0])
            if target:
                self.running.add(target)
        elif command.startswith('top'):
            lines = ['  PID USER  %CPU S ARGS'] + \
                ['{} u0_a1  0.0 S {}'.format(1000 + i, p) for i, p in enumerate(sorted(self.running))]
        for line in lines:
            if receiver is not None:
                receiver(line)
        return lines

    def _tick_removals(self):
        for package, remaining in list(self._pending_removal.items()):
            if remaining <= 0:
                self.installed.discard(package)
                del self._pending_removal[package]
            else:
                self._pending_removal[package] = remaining - 1

    def install_package(self, path, reinstall=False):
        self.commands.append('install {}'.format(path))
        package = self.packages_by_path.get(path)
        if package is not None:
            self.installed.add(package)

    def uninstall_package(self, package):
        self.commands.append('uninstall {}'.format(package))
        self.installed.discard(package)

    def is_package_installed(self, package):
        return package in self.installed

    def create_port_forwarding(self, local, remote):
        self.forwarded.add(local)

    def remove_port_forwarding(self, local, remote=None):
        self.forwarded.discard(local)

    def __eq__(self, other):
        return isinstance(other, FakeDevice) and self.serial == other.serial

    def __hash__(self):
        return hash(self.serial)

    def __str__(self):
        return self.serial


class FakeApkInfo(object):
    """Replacement for :class:`droidium.utils.android.ApkInfo` fed from a dict."""

    def __init__(self, infos):
        self.infos = infos

    def __call__(self, path):
        info = FakeApkInfo(self.infos)
        values = self.infos.get(path) or self.infos.get('*', {})
        info.package = values.get('package')
        info.activity = values.get('activity')
        info.activities = values.get('activities', [])
        return info


@pytest.fixture(autouse=True)
def clear_memo_cache():
    reset_memo_cache()
    yield
    reset_memo_cache()


@pytest.fixture
def signed_apk(tmp_path):
    return write_apk(tmp_path / 'app.apk', SIGNED_ENTRIES)


@pytest.fixture
def no_sleep(monkeypatch):
    """Record the delays of bounded waits instead of sleeping."""
    delays = []
    monkeypatch.setattr('droidium.utils.monitor.time.sleep', delays.append)
    return delays
