[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "kubevip"
version = "0.3.4"
description = "Virtual IP configuration, BGP peer parsing and lease-based leader election for control-plane clusters"
requires-python = ">=3.10"
dependencies = [
    "pyyaml",
    "psutil",
]
keywords = ["kubernetes", "virtual-ip", "vip", "bgp", "leader-election", "cluster"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: System Administrators",
    "Intended Audience :: Developers",
    "Operating System :: POSIX :: Linux",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Clustering",
    "Topic :: System :: Networking",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["kubevip"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
