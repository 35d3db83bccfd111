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
Resolution of on-device activities to the drivers controlling them, and
starting/stopping of activities.
"""
import threading

from droidium.device import AndroidDevice
from droidium.exception import DriverInstanceNotFoundError, NotUniqueDriverInstanceError
from droidium.utils.android import get_activity_component, get_activity_package
from droidium.utils.misc import get_logger

from typing import Any, Dict, Iterable, List, TYPE_CHECKING
if TYPE_CHECKING:
    from droidium.utils.annotation_helpers import Driver

logger = get_logger('droidium.activity')

ACTIVITY_URL_SCHEME = 'and-activity://'
NAME_SEPARATORS = ('.', '/', '$')


def matches_activity(activity: str, query: str) -> bool:
    """
    ``True`` if ``query`` names ``activity``: either exactly, or as a suffix
    starting right after a package, component or inner class separator.
    ``Baz`` and ``bar.Baz`` match ``foo.bar.Baz``, ``az`` does not.
    """
    if activity == query:
        return True
    if not query or not activity.endswith(query):
        return False
    if query[0] in NAME_SEPARATORS:
        return True
    return activity[-len(query) - 1] in NAME_SEPARATORS


class ActivityDriverMapper(object):
    """
    Which driver controls which activity. Drivers attach and detach from
    concurrently running test classes, so every access is serialised.

    One instance lives as long as its container; it is never shared between
    containers.
    """

    def __init__(self):
        self._map: Dict[str, Any] = {}
        self._lock = threading.RLock()

    def put(self, driver: 'Driver', activities: Iterable[str]) -> None:
        if driver is None:
            raise ValueError('Driver must not be None')
        if activities is None:
            raise ValueError('Activities must not be None')
        with self._lock:
            for activity in activities:
                self._map[activity] = driver

    def get_instance(self, query: str) -> 'Driver':
        """
        Return the driver of the activity named by ``query``, which may be
        fully qualified or a trailing part of the name.

        :raises DriverInstanceNotFoundError: If no activity matches.
        :raises NotUniqueDriverInstanceError: If several activities match;
            a longer name is needed to tell them apart.
        """
        if not query:
            raise ValueError('Activity name must not be empty')
        with self._lock:
            if query in self._map:
                return self._map[query]
            found = [(activity, driver) for activity, driver in self._map.items()
                     if matches_activity(activity, query)]
        if not found:
            raise DriverInstanceNotFoundError('No driver found for activity "{}"'.format(query))
        if len(found) > 1:
            raise NotUniqueDriverInstanceError(
                'Activity "{}" is ambiguous, it matches {}; use a fully qualified name'
                .format(query, ', '.join(sorted(a for a, _ in found))))
        return found[0][1]

    def get_activity(self, driver: 'Driver', query: str) -> str:
        """
        Return the full name of the activity controlled by ``driver`` that
        ``query`` names.

        :raises DriverInstanceNotFoundError: If ``driver`` controls no such activity.
        :raises NotUniqueDriverInstanceError: If ``query`` names several of its activities.
        """
        with self._lock:
            if self._map.get(query) is driver:
                return query
            found = [activity for activity, owner in self._map.items()
                     if owner is driver and matches_activity(activity, query)]
        if not found:
            raise DriverInstanceNotFoundError('Driver {!r} controls no activity "{}"'.format(driver, query))
        if len(found) > 1:
            raise NotUniqueDriverInstanceError('Activity "{}" is ambiguous, it matches {}'
                                               .format(query, ', '.join(sorted(found))))
        return found[0]

    def get_activities(self, driver: 'Driver') -> List[str]:
        with self._lock:
            return [activity for activity, owner in self._map.items() if owner is driver]

    def remove_activities(self, driver: 'Driver') -> int:
        """
        Forget every activity of ``driver``. Returns how many were removed.
        """
        with self._lock:
            doomed = [activity for activity, owner in self._map.items() if owner is driver]
            for activity in doomed:
                del self._map[activity]
        return len(doomed)

    def clear(self) -> None:
        with self._lock:
            self._map.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._map)


class NativeActivityManager(object):
    """Starts and stops activities through the driver controlling them."""

    def __init__(self, mapper: ActivityDriverMapper):
        if mapper is None:
            raise ValueError('Activity mapper must not be None')
        self.mapper = mapper

    def start_activity(self, activity: str) -> None:
        driver = self.mapper.get_instance(activity)
        full_name = self.mapper.get_activity(driver, activity)
        logger.debug('Starting %s', full_name)
        driver.get(ACTIVITY_URL_SCHEME + full_name)

    def stop_activity(self, activity: str) -> None:
        driver = self.mapper.get_instance(activity)
        logger.debug('Stopping %s', activity)
        driver.close()


class DeviceActivityManager(object):
    """Starts and stops activities with the activity manager of the device."""

    def __init__(self, device: AndroidDevice):
        if device is None:
            raise ValueError('Device must not be None')
        self.device = device

    def start_activity(self, activity: str) -> None:
        """
        :raises ValueError: If ``activity`` is not a fully qualified name or component.
        """
        self.device.execute_shell_command('am start -n {}'.format(get_activity_component(activity)))

    def stop_activity(self, activity: str) -> None:
        """
        Stopping an activity kills the whole package it belongs to.

        :raises ValueError: If ``activity`` is not fully qualified.
        """
        self.device.execute_shell_command('am kill {}'.format(get_activity_package(activity)))
