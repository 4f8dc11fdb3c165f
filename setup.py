from setuptools import setup, find_packages

setup(
    name="eventshare-access",
    version="1.0.0",
    packages=find_packages(exclude=["tests", "tests.*"]),
    python_requires=">=3.11",
    install_requires=[
        "fastapi",
        "sqlalchemy[asyncio]>=2.0",
        "aiosqlite",
        "pydantic[email]>=2.0",
        "pydantic-settings",
        "python-jose[cryptography]",
        "passlib[bcrypt]",
        "bcrypt>=4.0,<4.1",
        "python-multipart",
        "python-json-logger"
    ],
    extras_require={
        "test": [
            "pytest",
            "pytest-asyncio",
            "httpx"
        ]
    },
)
