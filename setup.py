"""
DocVault setup.py — Package configuration.
"""

from setuptools import find_packages, setup

setup(
    name="docvault",
    version="1.0.0",
    description="DocVault — per-user virtual filesystem and document revisioning core",
    packages=find_packages(include=["docvault", "docvault.*"]),
    python_requires=">=3.11",
    install_requires=[
        "sqlalchemy>=2.0",
        "psycopg2-binary>=2.9",
        "pydantic>=2.5",
        "pyyaml>=6.0",
        "httpx>=0.27",
        "minio>=7.2",
    ],
    extras_require={
        "test": [
            "pytest>=8.0",
            "pytest-asyncio>=0.23",
        ],
    },
)
