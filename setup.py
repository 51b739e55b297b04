"""Setup script for market CLI tool."""

from setuptools import setup

setup(
    name="marketplace-sync-cli",
    version="0.1.0",
    description="Marketplace CLI - Catalog sync and order tooling",
    py_modules=["market"],
    packages=["server", "marketplace_connector"],
    package_dir={"marketplace_connector": "libs/py-marketplace-connector/marketplace_connector"},
    install_requires=[
        "typer[all]>=0.9.0",
        "rich>=13.0.0",
        "httpx>=0.27.0",
        "python-dotenv>=1.0.0",
        "fastapi>=0.110.0",
        "uvicorn>=0.27.0",
        # Dependencies from py-marketplace-connector
        "pydantic>=2.0.0",
        "boto3>=1.34.0",
        "redis>=5.0.1",
        "python-dateutil>=2.8.0",
    ],
    extras_require={
        "dev": [
            "pytest>=7.0.0",
            "pytest-asyncio>=0.21.0",
            "pytest-cov>=4.0.0",
            "moto>=5.0.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "market=market:app",
        ],
    },
    python_requires=">=3.11",
)
