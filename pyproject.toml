[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "kubetrial"
version = "0.1.0"
description = "Feature-oriented end-to-end test environments with polling wait conditions for cluster resources"
requires-python = ">=3.10"
dependencies = []
keywords = ["testing", "e2e", "end-to-end", "kubernetes", "wait", "polling", "features"]
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
    "Topic :: Software Development :: Testing",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["kubetrial"]

[tool.pytest.ini_options]
addopts = "-ra"
