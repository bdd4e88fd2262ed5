from setuptools import setup, find_packages

setup(
    name="vm-runner",
    version="0.1.0",
    description="VM job runner - runs CI jobs inside per-job QEMU virtual machines",
    author="vm-runner Team",
    packages=find_packages(exclude=["tests", "tests.*"]),
    install_requires=[
        "pyzmq>=24.0.0",
        "opentelemetry-api>=1.14.0",
        "opentelemetry-sdk>=1.14.0",
        "opentelemetry-exporter-otlp>=1.14.0",
    ],
    extras_require={
        "dev": [
            "pytest>=7.0.0",
            "pytest-asyncio>=0.21.0",
            "pytest-cov",
            "black",
            "isort",
            "pylint",
        ],
    },
    entry_points={
        "console_scripts": [
            "vm-runner=vm_runner.worker:main",
        ],
    },
    python_requires=">=3.10",
)
