from setuptools import find_packages, setup

setup(
    name="pingsim",
    version="0.1.0",
    author="Vilmen Abramian",
    author_email="vilmen.abramian@gmail.com",
    platforms=["any"],
    license="MIT",
    url="https://github.com/VilmenAbramian/simulation",
    packages=find_packages(include=["pingsim", "pingsim.*"]),
    install_requires=[
        "click==8.1.7",
        "colorama==0.4.6",
        "pydantic==2.11.4",
        "numpy==2.2.5",
        "tabulate==0.9.0",
        "tqdm",
    ],
    tests_require=[
        "pytest",
    ],
    extras_require={
        "test": [
            "pytest",
        ],
    },
    entry_points={
        "console_scripts": [
            "sim = pingsim.main:cli",
        ],
    },
    python_requires=">=3.11",
)
