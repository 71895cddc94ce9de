"""Setup for FORJ Python SDK."""

from setuptools import find_packages, setup

setup(
    name="forj-sdk",
    version="0.1.0",
    description="FORJ API Python SDK",
    packages=find_packages(include=["forj_sdk", "forj_sdk.*"]),
    install_requires=[
        "requests>=2.31.0",
    ],
    python_requires=">=3.11",
)
