"""Setup script for the Evently registration engine."""

from setuptools import setup, find_packages

setup(
    name="evently-registration",
    version="1.0.0",
    description="Event registration with atomic capacity accounting and idempotent payment settlement",
    author="Evently",
    python_requires=">=3.10",
    packages=find_packages(include=["evently", "evently.*"]),
    install_requires=[
        line.strip()
        for line in open("requirements.txt")
        if line.strip() and not line.startswith("#") and not line.startswith("git+")
    ],
    extras_require={
        "test": [
            "pytest>=7.4.0",
            "pytest-asyncio>=0.23.0",
            "httpx>=0.27.0",
            "fakeredis>=2.20.0",
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
            "evently-api=evently.api.main:run",
            "evently-notification-publisher=evently.workers.notification_publisher:main",
            "evently-counter-audit=evently.workers.counter_audit_worker:main",
        ]
    },
    classifiers=[
        "Development Status :: 4 - Beta",
        "Framework :: FastAPI",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
    ],
)
