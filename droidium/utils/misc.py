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
Host process execution and other helpers shared by the rest of droidium.

"""
from ruamel.yaml import YAML
from ruamel.yaml.error import YAMLError, MarkedYAMLError
from droidium.utils.annotation_helpers import SubprocessCommand

import logging
import os
import shutil
import subprocess
import sys
import threading
import pexpect
import wrapt

from shlex import quote

# pylint: disable=redefined-builtin
from droidium.exception import TimeoutError
from typing import (Union, List, Optional, Tuple, Any, Callable, Dict,
                    TYPE_CHECKING, cast)
from typing_extensions import Literal
if TYPE_CHECKING:
    from pexpect import spawn


def preexec_function() -> None:
    """
    Put the current process into its own process group so that a command and
    all of its children can be killed together. Unix only.
    """
    os.setpgrp()


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


def get_subprocess(command: SubprocessCommand, **kwargs) -> subprocess.Popen:
    """
    Launch a subprocess to run the specified command, overriding stdout to PIPE.
    The process is set to a new process group via a preexec function.

    :param command: The command to execute.
    :param kwargs: Additional keyword arguments to pass to subprocess.Popen.
    :raises ValueError: If 'stdout' is provided in kwargs.
    :returns: A subprocess.Popen object running the command.
    """
    if 'stdout' in kwargs:
        raise ValueError('stdout argument not allowed, it will be overridden.')
    return subprocess.Popen(command,
                            stdout=subprocess.PIPE,
                            stderr=subprocess.PIPE,
                            stdin=subprocess.PIPE,
                            preexec_fn=preexec_function,
                            **kwargs)


def _decode(data: Union[str, bytes, None], stream: Any) -> str:
    if data is None:
        return ''
    if isinstance(data, bytes):
        # errors=replace, tool output is not always valid utf-8
        return data.decode(getattr(stream, 'encoding', None) or 'utf-8', 'replace')
    return data


def check_subprocess_output(
        process: subprocess.Popen,
        timeout: Optional[float] = None,
        ignore: Optional[Union[int, List[int], Literal['all']]] = None,
        inputtext: Union[str, bytes, None] = None) -> Tuple[str, str]:
    """
    Communicate with the given subprocess and return its decoded output and error streams.

    :param process: The subprocess.Popen instance to interact with.
    :param timeout: The maximum time in seconds to wait for the process to complete.
    :param ignore: A return code (or list of codes) to ignore; use "all" to ignore all nonzero codes.
    :param inputtext: Optional text or bytes to send to the process's stdin.
    :returns: A tuple (output, error) with decoded strings.
    :raises ValueError: If the ignore parameter is improperly formatted.
    :raises TimeoutError: If the process does not complete before the timeout expires.
        The process is killed first.
    :raises subprocess.CalledProcessError: If the process exits with a nonzero code not in ignore.
    """
    if ignore is None:
        ignore = []
    elif isinstance(ignore, int):
        ignore = [ignore]
    elif not isinstance(ignore, list) and ignore != 'all':
        message = 'Invalid value for ignore parameter: "{}"; must be an int or a list'
        raise ValueError(message.format(ignore))

    if isinstance(inputtext, str):
        inputtext = inputtext.encode('utf-8')

    with process:
        try:
            raw_output, raw_error = process.communicate(inputtext, timeout=timeout)
        except subprocess.TimeoutExpired as e:
            process.kill()
            raw_output, raw_error = process.communicate()
            output = _decode(raw_output, sys.stdout)
            error = _decode(raw_error, sys.stderr)
            raise TimeoutError(cast(Any, process.args), output='\n'.join([output, error])) from e

    output = _decode(raw_output, sys.stdout)
    error = _decode(raw_error, sys.stderr)

    retcode: int = process.returncode
    if retcode and ignore != 'all' and retcode not in ignore:
        raise subprocess.CalledProcessError(retcode, process.args, output, error)

    return output, error


def check_output(command: SubprocessCommand, timeout: Optional[float] = None,
                 ignore: Optional[Union[int, List[int], Literal['all']]] = None,
                 inputtext: Union[str, bytes, None] = None, **kwargs) -> Tuple[str, str]:
    """
    This is a version of subprocess.check_output that adds a timeout parameter to kill
    the subprocess if it does not return within the specified time.

    :param command: The command to execute.
    :param timeout: Time in seconds to wait for the command to complete.
    :param ignore: A return code or list of return codes to ignore, or "all" to ignore all.
    :param inputtext: Optional text or bytes to send to the command's stdin.
    :param kwargs: Additional keyword arguments for subprocess.Popen.
    :returns: A tuple (stdout, stderr) of the command's decoded output.
    :raises TimeoutError: If the command does not complete in time.
    :raises subprocess.CalledProcessError: If the command fails and its return code is not ignored.
    """
    process = get_subprocess(command, **kwargs)
    return check_subprocess_output(process, timeout=timeout, ignore=ignore, inputtext=inputtext)


def _spawn(command: SubprocessCommand, timeout: Optional[float]) -> 'spawn':
    if isinstance(command, str):
        return pexpect.spawn('/bin/sh', ['-c', command], encoding='utf-8',
                             codec_errors='replace', timeout=timeout)
    parts = [os.fspath(part) if not isinstance(part, bytes) else part.decode('utf-8')
             for part in cast(List[Any], command)]
    return pexpect.spawn(parts[0], parts[1:], encoding='utf-8',
                         codec_errors='replace', timeout=timeout)


def stream_output(command: SubprocessCommand, callback: Callable[[str], None],
                  timeout: Optional[float] = None) -> int:
    """
    Run ``command`` and hand every line it prints to ``callback`` as soon as
    it is read. Lines are passed without their terminator.

    :param command: The command to execute. Strings are run through ``/bin/sh -c``.
    :param callback: Called once per output line.
    :param timeout: Seconds to wait for each line; ``None`` waits forever.
    :returns: The number of lines read.
    :raises TimeoutError: If no output arrives within ``timeout`` seconds.
        The command is terminated.
    :raises subprocess.CalledProcessError: If the command exits with a non-zero code.
    """
    child = _spawn(command, timeout)
    collected: List[str] = []
    try:
        while True:
            try:
                line = child.readline()
            except pexpect.TIMEOUT as e:
                raise TimeoutError(cast(Any, command), output='\n'.join(collected)) from e
            if not line:
                break
            line = line.rstrip('\r\n')
            collected.append(line)
            callback(line)
    finally:
        child.close(force=True)

    if child.exitstatus:
        raise subprocess.CalledProcessError(child.exitstatus, command, '\n'.join(collected))
    return len(collected)


def ensure_directory_exists(dirpath: str) -> str:
    """A filter for directory paths to ensure they exist."""
    if not os.path.isdir(dirpath):
        os.makedirs(dirpath)
    return dirpath


def which(name: str) -> Optional[str]:
    """
    Find the full path to an executable by searching the system PATH.

    :param name: The name of the executable to find.
    :returns: The full path to the executable if found, otherwise None.
    """
    return shutil.which(name)


def join_command(command: List[str]) -> str:
    """Quote and join a list of arguments for logging or a host shell."""
    return ' '.join(quote(str(part)) for part in command)


class LoadSyntaxError(Exception):

    @property
    def message(self):
        if self.args:
            return self.args[0]
        return str(self)

    def __init__(self, message: str, filepath: str, lineno: Optional[int]):
        super(LoadSyntaxError, self).__init__(message)
        self.filepath = filepath
        self.lineno = lineno

    def __str__(self):
        message = 'Syntax Error in {}, line {}:\n\t{}'
        return message.format(self.filepath, self.lineno, self.message)


def load_struct_from_yaml(filepath: str) -> Dict:
    """
    Parses a config structure from a YAML file.
    The structure should be composed of basic Python types.

    :param filepath: Input file which contains YAML data.

    :raises LoadSyntaxError: if there is a syntax error in YAML data.

    :return: A dictionary which contains parsed YAML data
    """

    try:
        yaml = YAML(typ='safe', pure=True)
        with open(filepath, 'r', encoding='utf-8') as file_handler:
            return yaml.load(file_handler)
    except YAMLError as ex:
        message = str(ex)
        lineno = cast(MarkedYAMLError, ex).problem_mark.line if hasattr(ex, 'problem_mark') else None
        raise LoadSyntaxError(message, filepath=filepath, lineno=lineno) from ex


__memo_cache: Dict[str, Any] = {}
__memo_lock = threading.Lock()


def reset_memo_cache() -> None:
    """Clear the cache shared by every :func:`memoized` function."""
    with __memo_lock:
        __memo_cache.clear()


def memoized_decor(wrapped: Callable[..., Any], instance: Optional[Any],
                   args: Tuple[Any, ...], kwargs: Dict[str, Any]) -> Any:  # pylint: disable=unused-argument
    """
    Cache the result of a call keyed on the ``repr`` of its arguments.

    .. warning:: arguments are expected to be immutable values such as paths.
                 Results for an argument whose ``repr`` is unchanged are
                 returned from the cache even if the underlying file changed.
    """
    id_string: str = repr(wrapped) + repr(args) + repr(sorted(kwargs.items()))
    with __memo_lock:
        if id_string in __memo_cache:
            return __memo_cache[id_string]
    result = wrapped(*args, **kwargs)
    with __memo_lock:
        __memo_cache[id_string] = result
    return result


# create memoized decorator from memoized_decor function
memoized = wrapt.decorator(memoized_decor)
