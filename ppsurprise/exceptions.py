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

__all__ = [
    "ContractViolation",
    "IntervalOrderError",
    "IndexOrderError",
]


class ContractViolation(RuntimeError):
    """A caller handed the model an interval it cannot represent.

    These are not recoverable: sampling cannot continue from an invalid state.
    """


class IntervalOrderError(ContractViolation):
    """Error that an effective duration came out negative."""

    def __init__(self, message, t1=None, t2=None, duration=None):
        if t1 is not None and t2 is not None:
            message = f"{message} (t1={t1}, t2={t2}, duration={duration})"
        super().__init__(message)
        self.t1 = t1
        self.t2 = t2
        self.duration = duration


class IndexOrderError(ContractViolation):
    """Error that an interval ends at a smaller data index than it starts."""

    def __init__(self, message, i1=None, i2=None):
        if i1 is not None and i2 is not None:
            message = f"{message} (i1={i1}, i2={i2})"
        super().__init__(message)
        self.i1 = i1
        self.i2 = i2
