#!/usr/bin/env python3
from setuptools import setup

setup(
    name="heat-harness",
    version="0.1.0",
    description="Error-surface, thickness-calibration and stability harness for 1D heat conduction",
    long_description=open("README.md", encoding="utf-8").read(),
    long_description_content_type="text/markdown",
    python_requires=">=3.9",
    py_modules=[
        "harness",
        "harness_errors",
        "heat_solver",
        "scenarios",
        "risk_colors",
        "sweep_dispatch",
        "error_surface",
        "thickness_calibration",
        "stability_scan",
        "logging_config",
    ],
    install_requires=[
        "numpy",
        "scipy",
        "matplotlib",
        "tabulate",
        "tqdm",
        "questionary",
        "pyyaml",
    ],
    entry_points={
        "console_scripts": [
            "heat-harness=harness:main",
        ]
    },
    extras_require={
        "docs": [
            "sphinx>=3.0",
            "sphinx-rtd-theme",
        ],
        "test": [
            "pytest",
        ],
    },
)
