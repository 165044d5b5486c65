from setuptools import setup, find_packages

setup(
    name="dubstage",
    version="0.1.0",
    description="Resumable orchestration of multi-stage video dubbing jobs",
    author="DubStage Team",
    packages=find_packages(exclude=["tests*"]),
    python_requires=">=3.10",
    install_requires=[
        "pyyaml>=6.0",
        "sqlalchemy>=2.0",
        "redis>=5.0.1",
        "click>=8.0",
        "rich>=13.0",
        "python-dateutil>=2.8",
        "filelock>=3.12",
    ],
    extras_require={
        "test": [
            "pytest>=7.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "dubstage=dubstage.cli:main",
        ],
    },
)
