from setuptools import find_packages, setup

setup(
    name="stencil",
    version="0.1.0",
    packages=find_packages(exclude=["tests", "tests.*"]),
    entry_points={
        "console_scripts": [
            "stencil=stencil.cli:main",
        ],
    },
    python_requires=">=3.10",
    extras_require={
        "dev": ["pytest"],
    },
    description="Stencil: replayable template migrations for projects derived from a template",
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Developers",
        "Topic :: Software Development :: Code Generators",
        "Programming Language :: Python :: 3.12",
    ],
)
