"""Setup script for the patient identity core following Cosmic Python pattern."""

from setuptools import setup, find_namespace_packages

setup(
    name="patient-identity-core",
    version="1.0.0",
    description="Patient code allocation and duplicate patient detection for multi-establishment hospitals",
    author="Patient Identity Team",
    package_dir={"": "src"},
    packages=find_namespace_packages(where="src"),
    py_modules=["config"],
    python_requires=">=3.11",
    install_requires=[
        "sqlalchemy>=2.0",
        "psycopg2-binary",
        "redis",
        "tenacity",
    ],
    extras_require={
        "test": [
            "pytest",
            "pytest-cov",
            "fakeredis[lua]",
        ],
        "dev": [
            "black",
            "flake8",
            "mypy",
            "pre-commit",
        ],
    },
    entry_points={
        "console_scripts": [
            "patient-identity=shared.entrypoints.patient_identity_service:main",
        ],
    },
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: Healthcare Industry",
        "License :: OSI Approved :: MIT License",
        "Programming Language :: Python :: 3.11",
        "Topic :: Scientific/Engineering :: Medical Science Apps.",
    ],
)
