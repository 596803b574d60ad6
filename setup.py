# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Setup configuration for flowrunner, the workflow execution engine
"""

from setuptools import setup, find_packages

setup(
    name="flowrunner",
    version="1.0.0",
    description="Sequential workflow execution engine with branch routing and error-trigger recovery",
    author="adcl.io",
    package_dir={"": "backend"},
    packages=find_packages(where="backend", exclude=["tests", "tests.*"]),
    python_requires=">=3.9",
    install_requires=[
        "fastapi>=0.100.0",
        "pydantic>=2.0.0",
        "httpx>=0.24.0",
        "aiofiles>=23.2.1",
        "PyYAML>=6.0",
        "uvicorn>=0.23.0",
    ],
    extras_require={
        "dev": [
            "pytest>=7.0.0",
            "pytest-asyncio>=0.21.0",
        ]
    },
    entry_points={
        "console_scripts": [
            "flowrunner=flowrunner.__main__:main",
        ]
    },
)
