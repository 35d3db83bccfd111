#    Copyright 2025 ARM Limited
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
Helpers to annotate the code

"""
import os
import sys
from typing import Callable, Sequence, Union
from typing_extensions import NotRequired, Protocol, TypedDict


if sys.version_info >= (3, 9):
    SubprocessCommand = Union[
        str, bytes, os.PathLike[str], os.PathLike[bytes],
        Sequence[Union[str, bytes, os.PathLike[str], os.PathLike[bytes]]]]
else:
    SubprocessCommand = Union[str, bytes, os.PathLike,
                              Sequence[Union[str, bytes, os.PathLike]]]

LineReceiver = Callable[[str], None]


class Driver(Protocol):
    """The part of a remote automation client droidium talks to."""

    def get(self, url: str) -> None:
        ...

    def close(self) -> None:
        ...


class UserSigningSettings(TypedDict, total=False):
    keystore: NotRequired[str]
    storepass: NotRequired[str]
    keypass: NotRequired[str]
    alias: NotRequired[str]
    sigalg: NotRequired[str]
    digestalg: NotRequired[str]
    keyalg: NotRequired[str]


class UserConfiguration(TypedDict, total=False):
    server_apk: NotRequired[str]
    tmp_dir: NotRequired[str]
    remove_tmp_dir: NotRequired[bool]
    serial: NotRequired[str]
    container_qualifier: NotRequired[str]
    adb_server: NotRequired[str]
    adb_port: NotRequired[int]
    command_timeout: NotRequired[int]
    server_start_attempts: NotRequired[int]
    signing: NotRequired[UserSigningSettings]
