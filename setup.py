from setuptools import setup, find_packages

setup(
    name="durable-recorder",
    version="0.1.0",
    description="Timing reconciliation, loudness segmentation and exact range extraction for chunked recordings",
    author="",
    python_requires=">=3.8",
    packages=find_packages(exclude=["tests", "tests.*"]),
    install_requires=[
        "numpy>=1.21.0",
        "scipy>=1.7.0",
        "rich>=12.5.0",
        "pydantic>=2.0.0",
        "pyyaml>=6.0.0",
        "pypubsub>=4.0.3",
    ],
    extras_require={
        "test": [
            "pytest>=7.0.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "durable-recorder=durable_recorder.main:main",
        ],
    },
)
