"""
promptwire - Setup Configuration

Provider request/response normalization and multi-turn tool calling for
OpenAI, Anthropic, Ollama and OpenRouter.

License: Apache-2.0
"""

from setuptools import setup, find_packages
from pathlib import Path

# Read README for long description
readme_file = Path(__file__).parent / "README.md"
long_description = readme_file.read_text(encoding="utf-8") if readme_file.exists() else ""

# Core dependencies
core_deps = [
    # Framework core
    "pydantic>=2.11.9",
    "requests>=2.32.3",
    "aiohttp>=3.12.15",
    "pyyaml>=6.0.2",
    # Logging
    "python-json-logger>=2.0.7",  # v2.x (v3 requires testing)
    # Validation
    "jsonschema>=4.23.0",
]

# Development dependencies
dev_deps = [
    # Testing
    "pytest>=8.4.1",
    "pytest-asyncio>=1.0.0",
    "pytest-mock>=3.14.1",
    "pytest-cov>=6.2.1",
    # Code quality
    "black>=25.0.0",
    "flake8>=7.1.0",
    "mypy>=1.13.0",
]

setup(
    name="promptwire",
    version="0.1.0",

    # Package description
    description="Provider request/response normalization and multi-turn tool calling for LLM APIs",
    long_description=long_description,
    long_description_content_type="text/markdown",

    # Package discovery
    packages=find_packages(where="src"),
    package_dir={"": "src"},

    # Python version requirement
    python_requires=">=3.12",

    # Dependencies
    install_requires=core_deps,

    # Optional dependencies (extras)
    extras_require={
        # Development: testing
        "dev": dev_deps,
        "test": dev_deps,
    },

    # PyPI classifiers
    classifiers=[
        # Development status
        "Development Status :: 4 - Beta",

        # Audience
        "Intended Audience :: Developers",

        # License
        "License :: OSI Approved :: Apache Software License",

        # OS
        "Operating System :: OS Independent",

        # Python versions
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.12",
        "Programming Language :: Python :: 3.13",
        "Programming Language :: Python :: 3 :: Only",

        # Topics
        "Topic :: Scientific/Engineering :: Artificial Intelligence",
        "Topic :: Software Development :: Libraries :: Python Modules",

        # Framework
        "Framework :: AsyncIO",
    ],

    # Keywords for PyPI search
    keywords=[
        "ai", "llm", "tool-calling", "openai", "anthropic", "claude",
        "ollama", "openrouter", "structured-output", "streaming",
    ],

    # License
    license="Apache-2.0",

    # Package data
    include_package_data=True,
    zip_safe=False,
)
