#!/usr/bin/env python3
"""Setup script for bandscrape."""

from setuptools import setup

setup(
    name="bandscrape",
    version="0.2026.10.19.0",
    description="Bandcamp Album Downloader",
    author="",
    author_email="",
    py_modules=["bandscrape"],
    entry_points={
        "console_scripts": [
            "bandscrape = bandscrape:main_sync",
        ],
    },
    install_requires=[
        "aiohttp",
        "aiofiles",
        "beautifulsoup4",
        "colorama",
        "yarl",
    ],
    extras_require={
        "lxml": ["lxml"],
        "test": ["pytest"],
    },
    python_requires=">=3.10",
    license="MIT",
    platforms=["any"],
)
