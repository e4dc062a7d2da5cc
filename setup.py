import io
import os
import re

from setuptools import find_packages, setup


with io.open("flask_formwizard/__init__.py", "rt", encoding="utf8") as f:
    version = re.search(r"__version__ = \"(.*?)\"", f.read()).group(1)


def fpath(name):
    return os.path.join(os.path.dirname(__file__), name)


def read(fname):
    return open(fpath(fname)).read()


def desc():
    return read("README.rst")


setup(
    name="Flask-FormWizard",
    version=version,
    license="BSD",
    description=(
        "Configuration driven multi-step form wizards for Flask, with conditional"
        " steps, debounced server-side validation, many-to-many relationship steps,"
        " resumable progress and foreign-key aware submission."
    ),
    long_description=desc(),
    long_description_content_type="text/x-rst",
    packages=find_packages(exclude=["tests*"]),
    entry_points={
        "console_scripts": ["formwizard = flask_formwizard.cli:cli"],
    },
    include_package_data=True,
    zip_safe=False,
    platforms="any",
    install_requires=[
        "click>=8, <9",
        "Flask>=2, <4",
        "Flask-SQLAlchemy>=3, <4",
        "jsonschema>=3, <5",
        "marshmallow>=3.18.0, <5",
        "SQLAlchemy>=1.4, <3",
    ],
    extras_require={
        "test": ["pytest>=7"],
    },
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Environment :: Web Environment",
        "Intended Audience :: Developers",
        "License :: OSI Approved :: BSD License",
        "Operating System :: OS Independent",
        "Programming Language :: Python :: 3.8",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Topic :: Software Development :: Libraries :: Python Modules",
    ],
    python_requires=">=3.8",
)
