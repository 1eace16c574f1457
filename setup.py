"""
PodcastAI — setuptools build script.

Usage:
    # Development (editable install):
    pip install -e .

"""

from setuptools import setup, find_namespace_packages

APP_NAME = "podcast-ai"

setup(
    name=APP_NAME,
    version="1.0.0",
    description="Podcast episode transcription, summaries and transcript Q&A",
    packages=find_namespace_packages(include=["podcast_ai", "podcast_ai.*"]),
    py_modules=["main"],
    install_requires=[
        "requests>=2.28.0",
        "chromadb>=0.5.0",
    ],
    python_requires=">=3.10",
    entry_points={
        "console_scripts": [
            "podcast-ai=main:main",
        ],
    },
)
