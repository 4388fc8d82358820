"""Setup script for the feedercam package."""

from setuptools import setup, find_packages
from pathlib import Path

# Read README if it exists
readme_file = Path(__file__).parent / "README.md"
long_description = ""
if readme_file.exists():
    long_description = readme_file.read_text(encoding="utf-8")

setup(
    name="feedercam",
    version="0.1.0",
    description="Offline camera-trap presence detection and open-set species identification",
    long_description=long_description,
    long_description_content_type="text/markdown",
    author="Feedercam Team",
    packages=find_packages(exclude=["tests*", "docs*"]),
    python_requires=">=3.9",
    install_requires=[
        "onnxruntime>=1.16.3",
        "opencv-python>=4.9.0",
        "numpy>=1.26.0",
        "pandas>=2.2.0",
        "pyarrow>=15.0.0",
        "tqdm>=4.66.0",
        "pillow>=10.3.0",
        "ImageHash>=4.3.1",
        "pyyaml>=6.0.0",
        "scipy",
        "scikit-learn",
        "faiss-cpu",
    ],
    extras_require={
        "dev": [
            "pytest>=7.4.0",
            "black",
            "flake8",
            "mypy",
        ],
    },
    entry_points={
        "console_scripts": [
            "feedercam-scan=scripts.scan_folder:main",
            "feedercam-build-gallery=scripts.build_gallery:main",
            "feedercam-add-reference=scripts.add_reference:main",
            "feedercam-evaluate-index=scripts.evaluate_index:main",
        ],
    },
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Science/Research",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
    ],
)
