"""
Setup configuration for craftus package.
"""

from setuptools import setup, find_packages

setup(
    name="craftus",
    version="0.1.0",
    description="AI craft generation and step-by-step dissection engine",
    packages=find_packages(include=["craftus", "craftus.*"]),
    python_requires=">=3.11",
    install_requires=[
        "pydantic>=2.7",
        "pydantic-graph>=1.0",
        "google-genai>=1.40",
        "httpx>=0.27",
        "tenacity>=8.2",
        "logfire>=3.0",
        "python-dotenv>=1.0",
        "click>=8.1",
        "pillow>=10.0",
        "numpy>=1.26",
    ],
    extras_require={
        "test": [
            "pytest>=8.0",
            "pytest-asyncio>=0.23",
        ],
    },
    entry_points={
        "console_scripts": [
            "craftus=craftus.cli.main:cli",
        ],
    },
)
