import os
import re
import setuptools
from typing import List


def get_content(file: str) -> str:
    with open(file, "r", encoding="utf-8") as f:
        return f.read()


def get_version(package: str) -> str:
    path = os.path.join(package, "__init__.py")
    return re.search("__version__ = ['\"]([^'\"]+)['\"]", get_content(path)).group(1)


def get_packages(package: str) -> List[str]:
    return [
        directory
        for directory, subdirectories, filenames in os.walk(package)
        if os.path.exists(os.path.join(directory, "__init__.py"))
    ]


setuptools.setup(
    name="docapi_core",
    version=get_version("docapi_core"),
    packages=get_packages("docapi_core"),
    description="Generic REST resources with validation, access control and pagination on top of a document store",
    long_description=get_content("README.md"),
    long_description_content_type="text/markdown",
    license="GLPv3",
    install_requires=[
        "aiohttp>=3.8,<4.0",
        "fastapi>=0.100.0",
        "pydantic>=2.0,<3.0",
        "pydantic-core>=2.0",
        "pydantic-settings>=2.0,<3.0",
        "python-jose>=3.3.0,<4.0",
        "SQLAlchemy>=2.0,<3.0",
        "starlette>=0.27",
        "uvicorn>=0.20.0,<1.0"
    ],
    extras_require={
        "test": [
            "httpx>=0.24"
        ]
    },
    entry_points={
        "console_scripts": [
            "docapi-core=docapi_core.__main__:main"
        ]
    },
    project_urls={},
    python_requires=">=3.9",
    classifiers=[
        "Operating System :: OS Independent",
        "License :: OSI Approved :: GNU General Public License v3 (GPLv3)",
        "Topic :: Internet :: WWW/HTTP :: HTTP Servers",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Development Status :: 3 - Alpha"
    ]
)
