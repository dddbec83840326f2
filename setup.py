#!/usr/bin/env python3
"""nodedeploy - Setup"""

from setuptools import setup, find_packages

with open("requirements.txt") as f:
    requirements = [line for line in f.read().splitlines() if line.strip()]

setup(
    name="nodedeploy",
    version="1.0.0",
    description="Provision VPN nodes and register them with the control plane",
    author="nodedeploy Team",
    packages=find_packages(exclude=["tests", "tests.*"]),
    package_data={"nodedeploy": ["templates/*.j2"]},
    install_requires=requirements,
    extras_require={
        "test": ["pytest>=7.0"],
    },
    entry_points={
        "console_scripts": [
            "nodedeploy=nodedeploy.main:main",
        ],
    },
    python_requires=">=3.9",
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: System Administrators",
        "License :: OSI Approved :: MIT License",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
    ],
)
