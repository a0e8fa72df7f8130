[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "qvmfilecopy"
version = "0.1.0"
description = "File copy, disposable-VM file exchange and small helper services over plain byte streams"
requires-python = ">=3.10"
dependencies = []
keywords = ["file transfer", "filecopy", "qrexec", "disposable vm", "crc32", "clipboard"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Environment :: Console",
    "Intended Audience :: System Administrators",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Communications :: File Sharing",
    "Topic :: System :: Networking",
]

[project.optional-dependencies]
test = ["pytest"]

[project.scripts]
qvm-file-receiver = "qvmfilecopy.receiver:main"
qvm-file-sender = "qvmfilecopy.sender:main"
qvm-open-in-vm = "qvmfilecopy.dvm:open_in_vm_main"
qvm-file-editor = "qvmfilecopy.dvm:editor_main"
qvm-open-url = "qvmfilecopy.services:open_url_main"

[tool.hatch.build.targets.wheel]
packages = ["qvmfilecopy"]

[tool.hatch.build.targets.sdist]
include = ["qvmfilecopy", "tests", "pyproject.toml", "README.md"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
