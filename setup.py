from setuptools import find_packages, setup

import crudrepo


with open("README.md", "r") as f:
    long_description = f.read()

setup(
    name="mongo-crud-repository",
    description="Basic CRUD operations and a paginated collection iterator over MongoDB.",
    long_description=long_description,
    long_description_content_type="text/markdown",
    version=crudrepo.__version__,
    packages=find_packages(exclude=["tests", "tests.*"]),
    python_requires=">=3.8",
    install_requires=[
        "pymongo>=4.0",
        "loguru",
        "python-dotenv",
        "tqdm",
    ],
    extras_require={
        "test": ["pytest", "mongomock"],
    },
    license="MIT",
)
