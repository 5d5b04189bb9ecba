"""
Caffe2 image predictor plugin
Setup script for caffe2_predictor package

This package provides the Caffe2 image-classification predictor
that registers into the model-serving agent.
"""

from setuptools import setup, find_packages

setup(
    name="caffe2_predictor",
    version="0.1.0",
    description="Caffe2 image-classification predictor plugin",
    author="CarML Platform",
    python_requires=">=3.9",
    packages=find_packages(exclude=["tests", "tests.*"]),
    package_data={"caffe2_predictor": ["builtin_models/*.yml"]},
    install_requires=[
        "numpy>=1.20.0",
        "opencv-python-headless>=4.5.0",
        "PyYAML>=5.4.0",
        "loguru>=0.6.0",
        "aiohttp>=3.8.0",
        "pydantic>=2.0",
        "pydantic-settings>=2.0",
    ],
    extras_require={
        "onnx": ["onnxruntime>=1.12.0"],
        "pytorch": ["torch>=1.12.0"],
        "test": [
            "pytest>=7.0",
            "pytest-asyncio>=0.21.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "caffe2-predictor=caffe2_predictor.cli:main",
        ],
    },
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: Developers",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
    ],
)
