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

"""Tests for the Android SDK helpers."""

import pytest

from droidium.exception import HostError
from droidium.utils import android
from droidium.utils.android import (ApkInfo, expand_activity_name, get_activity_component,
                                    get_activity_package, get_adb_command, parse_activities,
                                    parse_badging_property)


BADGING = """package: name='com.example.calculator' versionCode='12' versionName='1.2.0' platformBuildVersionName=''
sdkVersion:'16'
uses-permission: name='android.permission.INTERNET'
uses-permission: name='android.permission.CAMERA'
application-label:'Calculator'
application: label='Calculator' icon='res/drawable/icon.png'
launchable-activity: name='com.example.calculator.MainActivity'  label='Calculator' icon=''
"""

XMLTREE = """N: android=http://schemas.android.com/apk/res/android
  E: manifest (line=2)
    A: package="com.example.calculator" (Raw: "com.example.calculator")
    E: application (line=10)
      E: activity (line=11)
        A: android:name(0x01010003)=".MainActivity" (Raw: ".MainActivity")
        E: intent-filter (line=12)
          E: action (line=13)
            A: android:name(0x01010003)="android.intent.action.MAIN" (Raw: "android.intent.action.MAIN")
      E: activity (line=20)
        A: android:theme(0x01010000)=@0x7f0a0001
        A: android:name(0x01010003)="Settings" (Raw: "Settings")
      E: activity-alias (line=25)
        A: http://schemas.android.com/apk/res/android:name(0x01010003)="org.other.Alias"
      E: service (line=30)
        A: android:name(0x01010003)=".Worker" (Raw: ".Worker")
"""


def test_parse_badging_property():
    lines = BADGING.splitlines()
    assert parse_badging_property(lines, 'package', 'name') == 'com.example.calculator'
    assert parse_badging_property(lines, 'package', 'versionCode') == '12'
    assert parse_badging_property(lines, 'launchable-activity', 'name') == \
        'com.example.calculator.MainActivity'
    assert parse_badging_property(lines, 'package', 'missing') == ''


def test_parse_activities():
    assert parse_activities(XMLTREE, 'com.example.calculator') == [
        'com.example.calculator.MainActivity',
        'com.example.calculator.Settings',
        'org.other.Alias',
    ]


@pytest.mark.parametrize('activity, expected', [
    ('.Main', 'com.example.Main'),
    ('Main', 'com.example.Main'),
    ('org.other.Main', 'org.other.Main'),
])
def test_expand_activity_name(activity, expected):
    assert expand_activity_name('com.example', activity) == expected


@pytest.mark.parametrize('activity, expected', [
    ('com.example.Main', 'com.example/.Main'),
    ('com.example/.Main', 'com.example/.Main'),
    ('com.example/org.other.Main', 'com.example/org.other.Main'),
])
def test_activity_component(activity, expected):
    assert get_activity_component(activity) == expected


@pytest.mark.parametrize('activity', ['Main', '.Main', 'com/example/Main'])
def test_invalid_activity_component(activity):
    with pytest.raises(ValueError):
        get_activity_component(activity)


def test_activity_package():
    assert get_activity_package('com.example.Main') == 'com.example'
    assert get_activity_package('com.example/.Main') == 'com.example'
    with pytest.raises(ValueError):
        get_activity_package('Main')


def test_apk_info(monkeypatch):
    commands = []

    def fake_run(command, timeout=None):
        commands.append(command)
        return BADGING if 'badging' in command else XMLTREE

    monkeypatch.setattr(android, '_run', fake_run)
    info = ApkInfo('/apks/calculator.apk', aapt='/sdk/build-tools/aapt')

    assert info.package == 'com.example.calculator'
    assert info.version_name == '1.2.0'
    assert info.activity == 'com.example.calculator.MainActivity'
    assert info.label == 'Calculator'
    assert info.permissions == ['android.permission.INTERNET', 'android.permission.CAMERA']
    assert 'com.example.calculator.Settings' in info.activities
    assert commands[-1] == ['/sdk/build-tools/aapt', 'dump', 'xmltree', '/apks/calculator.apk',
                            'AndroidManifest.xml']


def test_apk_info_with_aapt2(monkeypatch):
    commands = []

    def fake_run(command, timeout=None):
        commands.append(command)
        return BADGING if 'badging' in command else XMLTREE

    monkeypatch.setattr(android, '_run', fake_run)
    info = ApkInfo('/apks/calculator.apk', aapt='/sdk/build-tools/aapt2', aapt_version=2)
    info.activities

    assert commands[-1][-2:] == ['--file', 'AndroidManifest.xml']


def test_adb_command(monkeypatch):
    monkeypatch.setattr(android._ANDROID_ENV, 'get_env', lambda name: '/sdk/platform-tools/adb')
    assert get_adb_command('emulator-5554', ['shell', 'ls'], adb_server='build-host', adb_port=5038) == [
        '/sdk/platform-tools/adb', '-H', 'build-host', '-P', '5038', '-s', 'emulator-5554', 'shell', 'ls']
    assert get_adb_command(None, ['devices']) == ['/sdk/platform-tools/adb', 'devices']


def _touch(path):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(b'')
    return str(path)


def test_sdk_discovery_from_android_home(tmp_path):
    _touch(tmp_path / 'platforms' / 'android-9' / 'android.jar')
    newest = _touch(tmp_path / 'platforms' / 'android-30' / 'android.jar')
    _touch(tmp_path / 'build-tools' / '28.0.3' / 'aapt')
    aapt = _touch(tmp_path / 'build-tools' / '30.0.3' / 'aapt')

    env = android._AndroidEnvironment._from_android_home(str(tmp_path))

    assert env['adb'] == str(tmp_path / 'platform-tools' / 'adb')
    assert env['android_jar'] == newest
    assert env['aapt'] == aapt
    assert env['aapt_version'] == 1


def test_sdk_without_platforms(tmp_path):
    assert android._AndroidEnvironment._discover_android_jar(str(tmp_path)) is None


def test_java_tool_from_java_home(tmp_path, monkeypatch):
    jarsigner = _touch(tmp_path / 'bin' / 'jarsigner')
    monkeypatch.setenv('JAVA_HOME', str(tmp_path))
    assert android.get_java_tool('jarsigner') == jarsigner


def test_missing_java_tool(tmp_path, monkeypatch):
    monkeypatch.setenv('JAVA_HOME', str(tmp_path))
    monkeypatch.setenv('PATH', str(tmp_path))
    with pytest.raises(HostError):
        android.get_java_tool('keytool')
