"""Setup configuration for marketplace-connector."""

from setuptools import setup, find_packages

setup(
    name="marketplace-connector",
    version="0.1.0",
    description="Resilient async client for the marketplace catalog and order API",
    packages=find_packages(exclude=["tests", "tests.*"]),
    python_requires=">=3.11",
    install_requires=[
        "httpx>=0.25.0",
        "pydantic>=2.0.0",
        "python-dateutil>=2.8.0",
        "redis>=5.0.1",
        "boto3>=1.26.0",
    ],
    extras_require={
        "dev": [
            "pytest>=7.0.0",
            "pytest-asyncio>=0.21.0",
            "pytest-cov>=4.0.0",
            "moto>=5.0.0",  # For mocking AWS services
        ],
    },
    license="MIT",
)
