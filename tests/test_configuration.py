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

"""Tests for configuration loading and validation."""

import tempfile

import pytest

from droidium.configuration import DEFAULT_KEYSTORE, DroidiumConfiguration, SigningConfiguration
from droidium.exception import ConfigurationError


def test_signing_defaults_match_debug_keystore():
    signing = SigningConfiguration()
    assert signing.keystore == DEFAULT_KEYSTORE
    assert (signing.storepass, signing.keypass, signing.alias) == ('android', 'android', 'androiddebugkey')
    assert (signing.sigalg, signing.digestalg, signing.keyalg) == ('MD5withRSA', 'SHA1', 'RSA')


def test_with_keystore_copies_other_values():
    signing = SigningConfiguration(alias='release', storepass='secret')
    other = signing.with_keystore('/keys/release.keystore')
    assert other.keystore == '/keys/release.keystore'
    assert other.alias == 'release'
    assert signing.keystore == DEFAULT_KEYSTORE


def test_empty_signing_value():
    with pytest.raises(ConfigurationError):
        SigningConfiguration(alias='').validate()


def test_from_yaml(tmp_path):
    server = tmp_path / 'selendroid-server.apk'
    server.write_bytes(b'PK')
    path = tmp_path / 'droidium.yaml'
    path.write_text('server_apk: {}\n'
                    'tmp_dir: {}\n'
                    'remove_tmp_dir: false\n'
                    'serial: emulator-5556\n'
                    'signing:\n'
                    '  keystore: /keys/release.keystore\n'
                    '  alias: release\n'.format(server, tmp_path))

    config = DroidiumConfiguration.from_yaml(str(path))
    config.validate()

    assert config.server_apk == str(server)
    assert config.remove_tmp_dir is False
    assert config.serial == 'emulator-5556'
    assert config.signing == SigningConfiguration(keystore='/keys/release.keystore', alias='release')
    assert config.server_start_attempts == 5


def test_empty_yaml_gives_defaults(tmp_path):
    path = tmp_path / 'empty.yaml'
    path.write_text('')
    config = DroidiumConfiguration.from_yaml(str(path))
    assert config.tmp_dir == tempfile.gettempdir()
    assert config.remove_tmp_dir is True


@pytest.mark.parametrize('content', [
    'unknown_option: 1\n',
    'signing:\n  password: secret\n',
    '- a list\n',
    'server_apk: [unclosed\n',
])
def test_invalid_yaml(tmp_path, content):
    path = tmp_path / 'droidium.yaml'
    path.write_text(content)
    with pytest.raises(ConfigurationError):
        DroidiumConfiguration.from_yaml(str(path))


def test_missing_yaml(tmp_path):
    with pytest.raises(ConfigurationError):
        DroidiumConfiguration.from_yaml(str(tmp_path / 'missing.yaml'))


def test_validate(tmp_path):
    server = tmp_path / 'server.apk'
    server.write_bytes(b'PK')

    with pytest.raises(ConfigurationError):
        DroidiumConfiguration(server_apk=str(tmp_path / 'missing.apk'), tmp_dir=str(tmp_path)).validate()
    with pytest.raises(ConfigurationError):
        DroidiumConfiguration(server_apk=str(server), tmp_dir=str(tmp_path / 'missing')).validate()
    with pytest.raises(ConfigurationError):
        DroidiumConfiguration(server_apk=str(server), tmp_dir=str(tmp_path), command_timeout=0).validate()
    with pytest.raises(ConfigurationError):
        DroidiumConfiguration(server_apk=str(server), tmp_dir=str(tmp_path),
                              server_start_attempts=0).validate()
    DroidiumConfiguration(server_apk=str(server), tmp_dir=str(tmp_path)).validate()
