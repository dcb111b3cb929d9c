from pathlib import Path

from setuptools import find_packages, setup

setup(
    name="wsi_annotation",
    version=Path("./wsi_annotation/VERSION").read_text().strip(),
    description="Annotation engine for whole-slide images",
    packages=find_packages(include=["wsi_annotation", "wsi_annotation.*"]),
    package_data={"wsi_annotation": ["VERSION"]},
    python_requires=">=3.9",
    install_requires=[
        "numpy",
        "easydict",
        "tqdm",
    ],
    extras_require={
        "test": ["pytest"],
    },
    entry_points={
        "console_scripts": ["wsi_annotation=wsi_annotation.cli:main"],
    },
)
