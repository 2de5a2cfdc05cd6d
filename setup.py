from setuptools import find_packages, setup

with open("README.md", "r", encoding="utf-8") as fh:
    long_description = fh.read()

setup(
    name="webrefine",
    version="0.1.0",
    description="Extract web page content with an LLM and reshape it into the output you need",
    long_description=long_description,
    long_description_content_type="text/markdown",
    packages=find_packages(exclude=["tests", "tests.*"]),
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Developers",
        "License :: OSI Approved :: MIT License",
        "Operating System :: OS Independent",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
    ],
    python_requires=">=3.10",
    install_requires=[
        "openai[aiohttp]>=2.8.1",
        "httpx>=0.27.0",
        "rich>=14.2.0",
        "pyyaml>=6.0.3",
        "pandas>=2.1.0",
        "openpyxl>=3.1.0",
        "xlrd>=2.0.1",
        "python-docx>=1.1.0",
    ],
    extras_require={
        "test": [
            "pytest>=8.0.0",
            "pytest-asyncio>=0.23.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "webrefine=webrefine.webrefine:main",
        ],
    },
)
