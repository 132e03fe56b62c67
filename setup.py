"""Setup.py file
"""
import setuptools

with open("README.md", "r", encoding="utf-8") as fh:
    long_description = fh.read()

setuptools.setup(
    name="EC-Count",
    version="1.0.0",
    description="Build sparse gene x cell UMI count matrices from single cell pseudoalignment records",
    long_description=long_description,
    long_description_content_type="text/markdown",
    packages=setuptools.find_packages(exclude=["tests", "tests.*"]),
    entry_points={"console_scripts": ["EC-Count = ec_count.__main__:main"]},
    classifiers=(
        "Programming Language :: Python :: 3",
        "License :: OSI Approved :: MIT License",
        "Operating System :: OS Independent",
    ),
    install_requires=[
        "numpy>=1.24",
        "scipy>=1.11.0",
        "polars>=1.0",
        "pandas>=2.0",
        "pyyaml>=6.0",
    ],
    extras_require={
        "test": [
            "pytest>=6.0.0",
            "pytest-dependency>=0.5.1",
        ],
    },
    python_requires=">=3.10",
)
