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
Bounded waits for conditions that can only be observed by polling the device.
"""
import time

# pylint: disable=redefined-builtin
from droidium.exception import TimeoutError
from droidium.utils.misc import get_logger

from typing import Callable, List, Optional, TextIO, TYPE_CHECKING
if TYPE_CHECKING:
    from droidium.utils.annotation_helpers import LineReceiver

logger = get_logger('droidium.monitor')

DEFAULT_ATTEMPTS = 5
DEFAULT_DELAY = 1


class OutputMonitor(object):
    """
    Line receiver that watches command output for a token.

    With ``contains=True`` the monitor becomes active as soon as a line
    containing ``wait_for`` is seen. With ``contains=False`` it becomes active
    when a whole run of the command finishes without printing the token, which
    is how the disappearance of e.g. a package from ``pm list packages`` is
    detected.

    :param wait_for: Token to look for. Must not be empty.
    :param contains: Whether to wait for the token to appear or to vanish.
    :param match: Predicate deciding whether a line holds the token; plain
        substring search if not given.
    :param logfile: Optional path every received line is appended to.
    """

    @property
    def active(self) -> bool:
        return self._active

    @property
    def lines(self) -> List[str]:
        return list(self._lines)

    def __init__(self, wait_for: str, contains: bool = True, logfile: Optional[str] = None,
                 match: Optional[Callable[[str, str], bool]] = None):
        if not wait_for:
            raise ValueError('Token to wait for must not be empty')
        self.wait_for = wait_for
        self.contains = contains
        self.logfile = logfile
        self.match = match or (lambda line, token: token in line)
        self._active = False
        self._seen = False
        self._lines: List[str] = []
        self._logfh: Optional[TextIO] = None

    def __call__(self, line: str) -> None:
        self._lines.append(line)
        if self._logfh:
            self._logfh.write(line + '\n')
        if self.match(line, self.wait_for):
            self._seen = True
            if self.contains:
                self._active = True

    def start_run(self) -> None:
        """Prepare for another issue of the monitored command."""
        self._seen = False
        if self.logfile and self._logfh is None:
            self._logfh = open(self.logfile, 'a', encoding='utf-8')

    def finish_run(self) -> None:
        """Evaluate the run that just ended."""
        if not self.contains and not self._seen:
            self._active = True
        if self._logfh:
            self._logfh.flush()

    def close(self) -> None:
        if self._logfh:
            self._logfh.close()
            self._logfh = None


def wait_for_output(execute: Callable[[str, 'LineReceiver'], object],
                    monitor: OutputMonitor, command: str,
                    attempts: int = DEFAULT_ATTEMPTS, delay: float = DEFAULT_DELAY) -> None:
    """
    Issue ``command`` through ``execute`` until ``monitor`` becomes active.

    The command is issued at most ``attempts`` times with ``delay`` seconds
    between two issues.

    :param execute: Callable running a device command and feeding each output
        line to the receiver it is given, e.g.
        :meth:`droidium.device.AndroidDevice.execute_shell_command`.
    :raises TimeoutError: If the monitor is still inactive after the last attempt.
    """
    try:
        for attempt in range(1, attempts + 1):
            monitor.start_run()
            execute(command, monitor)
            monitor.finish_run()
            if monitor.active:
                logger.debug('"%s" satisfied after %d attempt(s)', command, attempt)
                return
            if attempt < attempts:
                time.sleep(delay)
    finally:
        monitor.close()
    raise TimeoutError(command, output='\n'.join(monitor.lines), attempts=attempts)


def retry(predicate: Callable[[], bool], description: str,
          attempts: int = DEFAULT_ATTEMPTS, delay: float = DEFAULT_DELAY) -> None:
    """
    Call ``predicate`` until it returns ``True``, at most ``attempts`` times
    with ``delay`` seconds in between.

    :raises TimeoutError: If the predicate never holds.
    """
    for attempt in range(1, attempts + 1):
        if predicate():
            return
        logger.debug('Waiting for %s (attempt %d/%d)', description, attempt, attempts)
        if attempt < attempts:
            time.sleep(delay)
    raise TimeoutError(description, attempts=attempts)
