[build-system]
requires = ["setuptools>=64"]
build-backend = "setuptools.build_meta"

[project]
name = "sointupy"
version = "0.1.0"
description = "Data model, 4klang import, WAV/raw export and loudness/true-peak metering for the Sointu modular synthesizer"
requires-python = ">=3.10"
dependencies = [
    "numpy",
]
keywords = ["synthesizer", "tracker", "4klang", "demoscene", "audio", "loudness", "wav"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Operating System :: OS Independent",
    "Topic :: Multimedia :: Sound/Audio :: Sound Synthesis",
    "Topic :: Multimedia :: Sound/Audio :: Analysis",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.setuptools.packages.find]
include = ["sointupy*"]

[tool.pytest.ini_options]
addopts = "-ra"
