from setuptools import setup, find_packages

setup(
    name="comfyflow",
    version="0.1.0",
    packages=find_packages(include=["comfyflow", "comfyflow.*"]),
    python_requires=">=3.10",
    install_requires=[
        "pydantic>=2",
        "httpx",
        "aiohttp",
        "python-dotenv",
    ],
    extras_require={
        "test": [
            "pytest",
            "pytest-asyncio",
            "pytest-cov",
        ],
    },
    entry_points={
        "console_scripts": [
            "comfyflow-generate=comfyflow.src.cli.run_generate:main",
        ],
    },
)
