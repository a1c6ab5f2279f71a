from setuptools import setup, find_packages

setup(
    name="mother-registry",
    version="1.0.0",
    description="Agent card normalization and idempotent sync to a ledger-backed registry",
    long_description=open("README.md").read(),
    long_description_content_type="text/markdown",
    package_dir={"": "src"},
    packages=find_packages(where="src"),
    install_requires=[
        "fastapi>=0.110",
        "pydantic>=2.0",
        "httpx>=0.27",
        "slowapi>=0.1.9",
        "python-json-logger>=3.1",
        "uvicorn>=0.29",
        "web3>=7.0",
        "eth-account>=0.13",
    ],
    extras_require={"dev": ["pytest>=7.0", "pytest-asyncio>=0.23", "respx>=0.21"]},
    entry_points={"console_scripts": ["mother-registry=mother_registry.cli:main"]},
    python_requires=">=3.10",
    license="CC0-1.0",
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Developers",
        "Framework :: FastAPI",
        "Topic :: Internet :: WWW/HTTP :: HTTP Servers",
        "License :: CC0 1.0 Universal (CC0 1.0) Public Domain Dedication",
        "Programming Language :: Python :: 3",
    ],
    keywords="agent registry agent-card erc-8004 knowledge-graph",
)
