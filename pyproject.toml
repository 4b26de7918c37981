[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "teeregistry"
version = "0.1.0"
description = "In-memory registry of remotely attested SGX enclaves and an exchange-rate oracle with a release whitelist"
requires-python = ">=3.10"
keywords = ["sgx", "remote-attestation", "ias", "enclave", "registry", "oracle", "exchange-rate"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Security",
]
dependencies = [
    "cryptography",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["teeregistry"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
