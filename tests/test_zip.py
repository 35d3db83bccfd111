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

"""Tests for in-memory package editing."""

import zipfile

import pytest

from droidium.exception import ResourceError
from droidium.utils.zip import ApkArchive, is_signature_entry

from conftest import write_apk


@pytest.mark.parametrize('name, expected', [
    ('META-INF/MANIFEST.MF', True),
    ('META-INF/CERT.SF', True),
    ('META-INF/CERT.RSA', True),
    ('META-INF/ANDROIDD.DSA', True),
    ('META-INF/key.ec', True),
    ('META-INF/SIG-FOO', True),
    ('META-INF/services/javax.annotation.processing.Processor', False),
    ('META-INF/androidx.core_core.version', False),
    ('AndroidManifest.xml', False),
    ('assets/META-INF/CERT.SF', False),
])
def test_signature_entries(name, expected):
    assert is_signature_entry(name) is expected


def test_strip_signature_keeps_other_entries(signed_apk, tmp_path):
    archive = ApkArchive(signed_apk)
    removed = archive.strip_signature()
    target = archive.export(str(tmp_path / 'unsigned.apk'))

    assert sorted(removed) == ['META-INF/CERT.RSA', 'META-INF/CERT.SF', 'META-INF/MANIFEST.MF']
    with zipfile.ZipFile(target) as zfh:
        assert zfh.namelist() == ['AndroidManifest.xml', 'classes.dex', 'res/layout/main.xml']
        assert zfh.read('classes.dex') == b'dex\n035'


def test_strip_unsigned_archive(tmp_path):
    archive = ApkArchive(write_apk(tmp_path / 'plain.apk', {'classes.dex': b''}))
    assert archive.strip_signature() == []


def test_delete_directory(signed_apk):
    archive = ApkArchive(signed_apk)
    assert archive.delete('META-INF/') == 3
    assert archive.delete('missing.txt') == 0
    assert 'META-INF/CERT.SF' not in archive


def test_replace_entry(signed_apk, tmp_path):
    archive = ApkArchive(signed_apk)
    archive.replace('AndroidManifest.xml', b'<compiled/>')
    archive.replace('assets/extra.txt', b'extra')
    target = archive.export(str(tmp_path / 'edited.apk'))

    edited = ApkArchive(target)
    assert edited.get('AndroidManifest.xml') == b'<compiled/>'
    assert edited.names()[0] == 'AndroidManifest.xml'
    assert edited.names()[-1] == 'assets/extra.txt'


def test_missing_entry(signed_apk):
    with pytest.raises(ResourceError):
        ApkArchive(signed_apk).get('resources.arsc')


def test_not_an_archive(tmp_path):
    path = tmp_path / 'broken.apk'
    path.write_text('not a zip')
    with pytest.raises(ResourceError):
        ApkArchive(str(path))
    with pytest.raises(ResourceError):
        ApkArchive(str(tmp_path / 'missing.apk'))
