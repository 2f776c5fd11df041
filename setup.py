#!/usr/bin/env python
from setuptools import (
    find_packages,
    setup,
)

description = "conntest: probe P2P connectivity and bandwidth over TCP and UDP"

extras_require = {
    "dev": [
        "build>=0.9.0",
        "mypy==1.10.0",
        "pre-commit>=3.4.0",
        "tox>=4.0.0",
        "wheel",
    ],
    "test": [
        "pytest>=7.0.0",
        "pytest-trio>=0.5.2",
    ],
}

extras_require["dev"] = extras_require["dev"] + extras_require["test"]

try:
    with open("./README.md", encoding="utf-8") as readme:
        long_description = readme.read()
except FileNotFoundError:
    long_description = description

install_requires = [
    "lru-dict>=1.1.6",
    "multiaddr>=0.0.9",
    "trio-typing>=0.0.4",
    "trio>=0.26.0",
]

setup(
    name="conntest",
    version="0.1.0",
    description=description,
    long_description=long_description,
    long_description_content_type="text/markdown",
    include_package_data=True,
    install_requires=install_requires,
    python_requires=">=3.10, <4",
    extras_require=extras_require,
    license="MIT AND Apache-2.0",
    zip_safe=False,
    keywords="p2p connectivity bandwidth udp tcp",
    packages=find_packages(exclude=["scripts", "scripts.*", "tests", "tests.*"]),
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Developers",
        "Natural Language :: English",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Programming Language :: Python :: 3.13",
    ],
    platforms=["unix", "linux", "osx"],
    entry_points={
        "console_scripts": [
            "conntest=conntest.cli:main",
        ],
    },
)
