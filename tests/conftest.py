#   Copyright 2024 - present The ppsurprise Developers
#
#   Licensed under the Apache License, Version 2.0 (the "License");
#   you may not use this file except in compliance with the License.
#   You may obtain a copy of the License at
#
#       http://www.apache.org/licenses/LICENSE-2.0
#
#   Unless required by applicable law or agreed to in writing, software
#   distributed under the License is distributed on an "AS IS" BASIS,
#   WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
#   See the License for the specific language governing permissions and
#   limitations under the License.
import pytest

import ppsurprise as pps


@pytest.fixture
def event_times():
    return pps.EventTimes([0.5, 2.3, 2.7, 4.9])


@pytest.fixture
def event_model(event_times):
    return pps.PoissonGammaModel(1.0, 1.0, events=event_times)
