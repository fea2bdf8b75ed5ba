"""
Setup script for meshcast package
Streams unstructured hydrodynamic meshes to a GPU scalar-field renderer
"""
from setuptools import setup, find_namespace_packages
from pathlib import Path

# Read README for long description
readme_file = Path(__file__).parent / "README.md"
long_description = readme_file.read_text(encoding="utf-8") if readme_file.exists() else ""

setup(
    name="meshcast",
    version="0.1.0",
    author="Kevin Nebiolo",
    author_email="kevin.nebiolo@kleinschmidtgroup.com",
    description="Mesh-to-buffer encoding service and GPU scalar-field layer for hydrodynamic model results",
    long_description=long_description,
    long_description_content_type="text/markdown",
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Science/Research",
        "Topic :: Scientific/Engineering :: GIS",
        "Topic :: Scientific/Engineering :: Visualization",
        "License :: OSI Approved :: MIT License",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Operating System :: OS Independent",
    ],
    package_dir={"": "src"},
    packages=find_namespace_packages(where="src", include=["meshcast", "meshcast.*"]),
    python_requires=">=3.10",
    install_requires=[
        # Core scientific stack
        "numpy>=1.20",
        # Geospatial
        "pyproj>=3.0,<4.0",
        # Storage
        "h5py>=3.1,<4.0",
        # OpenGL rendering
        "moderngl>=5.11,<6.0",
        "moderngl-window>=2.4,<3.0",
        "pygame>=2.6,<3.0",
        "pillow>=11.0",
        # Transport
        "aiohttp>=3.9,<4.0",
    ],
    extras_require={
        "dev": [
            "black>=22.0",
            "isort>=5.0",
            "pytest>=7.0",
            "pytest-cov>=3.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "meshcast=meshcast.cli:main",
        ],
    },
    include_package_data=True,
    zip_safe=False,
)
