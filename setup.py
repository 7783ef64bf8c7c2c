"""
Setup script for the auto-job workflow project.

Allows development installation with `pip install -e .`
"""

from setuptools import setup, find_packages

setup(
    name="auto-job-workflow",
    version="1.0.0",
    packages=find_packages(include=["src", "src.*", "workflow_service", "workflow_service.*"]),
    python_requires=">=3.11",
    install_requires=[
        "fastapi>=0.110",
        "uvicorn>=0.27",
        "pydantic>=2.5",
        "pydantic-settings>=2.1",
        "pymongo>=4.6",
        "python-dotenv>=1.0",
        "requests>=2.31",
        "tenacity>=8.2",
        "langchain-core>=0.2",
        "langchain-openai>=0.1",
        "json-repair>=0.25",
    ],
    extras_require={
        "test": [
            "pytest>=8.0",
            "pytest-asyncio>=0.23",
            "pytest-mock>=3.12",
            "httpx>=0.27",
        ],
    },
)
