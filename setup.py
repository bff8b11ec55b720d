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


import re

from codecs import open
from os.path import dirname, join, realpath

from setuptools import find_packages, setup

DESCRIPTION = "Conjugate Poisson models and posterior predictive surprise scores for changepoint analysis"
AUTHOR = "ppsurprise Developers"
LICENSE = "Apache License, Version 2.0"

classifiers = [
    "Development Status :: 4 - Beta",
    "Programming Language :: Python",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "License :: OSI Approved :: Apache Software License",
    "Intended Audience :: Science/Research",
    "Topic :: Scientific/Engineering",
    "Topic :: Scientific/Engineering :: Mathematics",
    "Operating System :: OS Independent",
]

PROJECT_ROOT = dirname(realpath(__file__))

# Get the long description from the README file
with open(join(PROJECT_ROOT, "README.rst"), encoding="utf-8") as buff:
    LONG_DESCRIPTION = buff.read()

REQUIREMENTS_FILE = join(PROJECT_ROOT, "requirements.txt")
DEV_REQUIREMENTS_FILE = join(PROJECT_ROOT, "requirements-dev.txt")

with open(REQUIREMENTS_FILE) as f:
    install_reqs = f.read().splitlines()

with open(DEV_REQUIREMENTS_FILE) as f:
    test_reqs = f.read().splitlines()


def get_version():
    with open(join(PROJECT_ROOT, "ppsurprise", "__init__.py"), encoding="utf-8") as buff:
        return re.search(r'^__version__ = "([^"]+)"', buff.read(), re.M).group(1)


if __name__ == "__main__":
    setup(
        name="ppsurprise",
        version=get_version(),
        maintainer=AUTHOR,
        description=DESCRIPTION,
        license=LICENSE,
        long_description=LONG_DESCRIPTION,
        long_description_content_type="text/x-rst",
        packages=find_packages(exclude=["tests*"]),
        classifiers=classifiers,
        python_requires=">=3.10",
        install_requires=install_reqs,
        tests_require=test_reqs,
        extras_require={"test": test_reqs},
    )
