"""Setup script for the vehicle rental booking service."""

from setuptools import setup, find_packages

setup(
    name="rentals",
    version="1.0.0",
    description="Vehicle rental booking backend: Stripe checkout, webhooks, POS terminal and identity verification",
    author="ML Roadmap Bootcamp",
    python_requires=">=3.11",
    packages=find_packages(include=["rentals", "rentals.*"]),
    install_requires=[
        "fastapi>=0.110.0",
        "uvicorn[standard]>=0.27.0",
        "sqlalchemy[asyncio]>=2.0.25",
        "asyncpg>=0.29.0",
        "pydantic>=2.5.0",
        "pydantic-settings>=2.1.0",
        "structlog>=24.1.0",
        "python-json-logger>=2.0.7",
        "prometheus-client>=0.19.0",
        "stripe>=8.0.0",
        "tenacity>=8.2.3",
        "redis>=5.0.1",
        "httpx>=0.26.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.4.0",
            "pytest-asyncio>=0.23.0",
            "pytest-mock>=3.12.0",
            "aiosqlite>=0.19.0",
        ],
        "dev": [
            "black>=23.0.0",
            "isort>=5.12.0",
            "flake8>=6.0.0",
            "mypy>=1.4.0",
            "pytest-cov>=4.1.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "rentals-api=rentals.api.main:run",
        ]
    },
    classifiers=[
        "Development Status :: 4 - Beta",
        "Framework :: FastAPI",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
    ],
)
