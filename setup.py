from setuptools import setup, find_packages

setup(
    name="ipgate",
    version="0.1.0",
    packages=find_packages(include=["ipgate", "ipgate.*"]),
    python_requires=">=3.11",
    install_requires=[
        "fastapi",
        "pydantic",
        "pydantic-settings",
        "redis>=5.0",
    ],
    extras_require={
        "test": [
            "pytest",
            "pytest-asyncio",
            "httpx",
        ],
    },
)
