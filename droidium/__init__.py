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

from droidium.container import DroidiumContainer
from droidium.configuration import DroidiumConfiguration, SigningConfiguration

from droidium.device import AndroidDevice, DeviceMetadata, DeviceRegistry
from droidium.deployment import (Deployment, DeploymentRegistry, DeploymentState,
                                 InstrumentationConfiguration, SelendroidDeployment)

from droidium.sign import KeyStoreManager, PackageSigner
from droidium.rebuild import ManifestRebuilder
from droidium.instrumentation import (InstrumentationDecider, InstrumentationPerformer,
                                      InstrumentationRequest, InstrumentationEvent,
                                      SelendroidServerManager)
from droidium.application import ApplicationManager, DeploymentInstaller
from droidium.activity import ActivityDriverMapper, DeviceActivityManager, NativeActivityManager

from droidium.exception import DroidiumError, ConfigurationError, ExecutionError, StateError

from droidium.utils.android import ApkInfo
from droidium.utils.identifier import ArtifactKind, get_identifier


__version__ = '1.0.0'
