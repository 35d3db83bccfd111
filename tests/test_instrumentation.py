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

"""Tests for deciding on and performing instrumentation."""

from types import SimpleNamespace
from unittest import mock

import pytest
import requests

from droidium.deployment import (Deployment, DeploymentRegistry, DeploymentState,
                                 InstrumentationConfiguration, SelendroidDeployment)
from droidium.device import DeviceMetadata, DeviceRegistry
from droidium.exception import (ExecutionError, InstrumentationConflictError,
                                InvalidInstrumentationConfigurationError, StateError)
from droidium.instrumentation import (InstrumentationDecider, InstrumentationEvent,
                                      InstrumentationPerformer, InstrumentationRequest,
                                      SelendroidServerManager, resolve_instrumentation,
                                      validate_instrumentation)

from conftest import FakeApkInfo, FakeDevice


def test_resolve_instrumentation_skips_undeclared():
    mapping = resolve_instrumentation({'calculator': '8080', 'browser': None, 'maps': 8081})
    assert mapping == {'calculator': InstrumentationConfiguration(8080),
                       'maps': InstrumentationConfiguration(8081)}


def test_port_conflict():
    with pytest.raises(InstrumentationConflictError) as excinfo:
        resolve_instrumentation({'calculator': 8080, 'maps': '8080'})
    assert excinfo.value.port == 8080
    assert excinfo.value.deployments == ('calculator', 'maps')


def test_unset_port_is_invalid():
    with pytest.raises(InvalidInstrumentationConfigurationError):
        validate_instrumentation({'calculator': InstrumentationConfiguration()})
    assert validate_instrumentation({}) is True


def test_decider_requests_only_declared_deployments():
    handled = []
    decider = InstrumentationDecider(resolve_instrumentation({'calculator': 8080}), handler=handled.append)

    assert decider.on_deployment_created('browser', '/apks/browser.apk') is None
    created = decider.on_deployment_created('calculator', '/apks/calculator.apk')
    removed = decider.on_deployment_removed('calculator', '/apks/calculator.apk')

    assert created == InstrumentationRequest(InstrumentationEvent.PERFORM, 'calculator',
                                             '/apks/calculator.apk', InstrumentationConfiguration('8080'))
    assert removed.event is InstrumentationEvent.REMOVE
    assert handled == [created, removed]
    assert decider.is_instrumented('calculator')
    assert not decider.is_instrumented('browser')


def test_decider_mapping_is_replaced_per_test_class():
    decider = InstrumentationDecider(resolve_instrumentation({'calculator': 8080}))
    decider.set_mapping(resolve_instrumentation({'maps': 8081}))
    assert not decider.is_instrumented('calculator')
    assert decider.mapping == {'maps': InstrumentationConfiguration(8081)}

    with pytest.raises(InstrumentationConflictError):
        decider.set_mapping({'a': InstrumentationConfiguration(9000), 'b': InstrumentationConfiguration(9000)})
    assert decider.is_instrumented('maps')


class FakeSession(object):

    def __init__(self, responses):
        self.responses = list(responses)
        self.urls = []

    def get(self, url, timeout=None):
        self.urls.append(url)
        response = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(response, Exception):
            raise response
        return mock.Mock(status_code=response)


def make_server(port=8080):
    deployment = Deployment('calculator', '/apks/calculator.apk', resigned_apk='/work/app.apk',
                            base_package='com.example.calculator')
    return SelendroidDeployment(deployment, InstrumentationConfiguration(port),
                                resigned='/work/server.apk', server_base_package='io.selendroid_1',
                                selendroid_package='io.selendroid')


def test_server_install_removes_stale_copies():
    device = FakeDevice(packages_by_path={'/work/server.apk': 'io.selendroid_1'})
    device.installed.update(['io.selendroid', 'io.selendroid_1'])
    manager = SelendroidServerManager(device, attempts=2, delay=0, session=FakeSession([200]))

    manager.install(make_server())

    assert device.commands[:2] == ['uninstall io.selendroid', 'uninstall io.selendroid_1']
    assert device.commands[-1] == 'install /work/server.apk'
    assert 'io.selendroid_1' in device.installed


def test_server_install_not_listed_afterwards():
    manager = SelendroidServerManager(FakeDevice(), attempts=2, delay=0, session=FakeSession([200]))
    with pytest.raises(ExecutionError):
        manager.install(make_server())


def test_instrument_starts_server(no_sleep):
    device = FakeDevice()
    device.instrumentation_targets['io.selendroid_1'] = 'com.example.calculator'
    session = FakeSession([requests.ConnectionError('refused'), 500, 200])
    manager = SelendroidServerManager(device, attempts=5, delay=1, session=session)

    manager.instrument(make_server())

    assert ("am instrument -e main_activity '' -e server_port 8080 "
            "io.selendroid_1/io.selendroid.ServerInstrumentation") in device.commands
    assert 'top -n 1' in device.commands
    assert device.forwarded == {8080}
    assert session.urls == ['http://localhost:8080/wd/hub/status'] * 3


def test_instrument_gives_up_and_removes_forwarding(no_sleep):
    device = FakeDevice()
    device.instrumentation_targets['io.selendroid_1'] = 'com.example.calculator'
    session = FakeSession([requests.ConnectionError('refused')])
    manager = SelendroidServerManager(device, attempts=3, delay=1, session=session)

    with pytest.raises(ExecutionError):
        manager.instrument(make_server())

    assert len(session.urls) == 3
    assert device.forwarded == set()


def test_instrument_application_never_starts(no_sleep):
    device = FakeDevice()
    manager = SelendroidServerManager(device, attempts=2, delay=1, session=FakeSession([200]))
    with pytest.raises(ExecutionError):
        manager.instrument(make_server())
    assert device.commands.count('top -n 1') == 2
    assert device.forwarded == set()


def test_instrument_ignores_processes_sharing_the_name(no_sleep):
    device = FakeDevice()
    device.running.add('com.example.calculator.helper')
    manager = SelendroidServerManager(device, attempts=2, delay=1, session=FakeSession([200]))
    with pytest.raises(ExecutionError):
        manager.instrument(make_server())
    assert device.commands.count('top -n 1') == 2


def test_uninstall_always_removes_forwarding():
    device = FakeDevice()
    device.forwarded.add(8080)
    device.fail_commands.add('pm uninstall')
    manager = SelendroidServerManager(device, session=FakeSession([200]))

    with pytest.raises(ExecutionError):
        manager.uninstall(make_server())

    assert device.forwarded == set()


@pytest.fixture
def pipeline(tmp_path):
    server_apk = tmp_path / 'selendroid-server.apk'
    server_apk.write_bytes(b'PK')
    device = FakeDevice()
    devices = DeviceRegistry()
    devices.put(device, DeviceMetadata('android'))
    devices.add_deployment_for_device(device, 'calculator')
    deployments = DeploymentRegistry('deployments')
    application = Deployment('calculator', '/apks/calculator.apk', resigned_apk='/work/app.apk',
                             base_package='com.example.calculator')
    deployments.add(application)

    signer = mock.Mock()
    signer.resign.side_effect = lambda path: path + '.signed'
    rebuilder = mock.Mock()
    rebuilder.rebuild.side_effect = lambda copy, server, app: copy + '.rebuilt'
    manager = mock.Mock()
    factory = mock.Mock(return_value=manager)

    performer = InstrumentationPerformer(str(server_apk), str(tmp_path), signer, rebuilder,
                                         deployments, DeploymentRegistry('servers'), devices,
                                         server_manager_factory=factory,
                                         apk_info_factory=FakeApkInfo({'*': {'package': 'io.selendroid'}}))
    return SimpleNamespace(performer=performer, application=application, manager=manager,
                           factory=factory, device=device, rebuilder=rebuilder)


def perform_request(port=8080):
    return InstrumentationRequest(InstrumentationEvent.PERFORM, 'calculator', '/apks/calculator.apk',
                                  InstrumentationConfiguration(port))


def test_perform_instrumentation(pipeline):
    server = pipeline.performer.perform(perform_request())

    assert server.server_base_package == 'io.selendroid_1'
    assert server.selendroid_package == 'io.selendroid'
    assert server.resigned == server.rebuilt + '.signed'
    assert server.instrumented_deployment is pipeline.application
    assert pipeline.application.state is DeploymentState.INSTRUMENTED
    assert pipeline.performer.servers.get('/apks/calculator.apk') is server
    pipeline.rebuilder.rebuild.assert_called_once_with(server.working_copy, 'io.selendroid_1',
                                                       'com.example.calculator')
    pipeline.factory.assert_called_once_with(pipeline.device)
    pipeline.manager.install.assert_called_once_with(server)
    pipeline.manager.instrument.assert_called_once_with(server)


def test_server_packages_are_unique(pipeline):
    performer = pipeline.performer
    assert performer.next_server_package('io.selendroid') == 'io.selendroid_1'
    assert performer.next_server_package('io.selendroid') == 'io.selendroid_2'


def test_failed_instrumentation_marks_deployment(pipeline):
    pipeline.manager.instrument.side_effect = ExecutionError('server did not start')
    with pytest.raises(ExecutionError):
        pipeline.performer.perform(perform_request())
    assert pipeline.application.state is DeploymentState.FAILED


def test_perform_unknown_deployment(pipeline):
    request = InstrumentationRequest(InstrumentationEvent.PERFORM, 'maps', '/apks/maps.apk',
                                     InstrumentationConfiguration(8080))
    with pytest.raises(StateError):
        pipeline.performer.perform(request)


def test_remove_instrumentation(pipeline):
    server = pipeline.performer.perform(perform_request())
    pipeline.manager.uninstall.side_effect = ExecutionError('device gone')

    removal = InstrumentationRequest(InstrumentationEvent.REMOVE, 'calculator', '/apks/calculator.apk',
                                     InstrumentationConfiguration(8080))
    with pytest.raises(ExecutionError):
        pipeline.performer(removal)

    pipeline.manager.disable.assert_called_once_with(server)
    assert pipeline.performer.servers.size() == 0


def test_remove_instrumentation_state(pipeline):
    pipeline.performer(perform_request())
    pipeline.performer(InstrumentationRequest(InstrumentationEvent.REMOVE, 'calculator',
                                              '/apks/calculator.apk', InstrumentationConfiguration(8080)))
    assert pipeline.application.state is DeploymentState.INSTRUMENTATION_REMOVED
    with pytest.raises(StateError):
        pipeline.performer.remove(perform_request())
