from pathlib import Path

from setuptools import setup, find_packages

here = Path(__file__).resolve().parent
readme = here / "README.md"


def read_requirements(name):
    lines = (here / name).read_text(encoding="utf-8").splitlines()
    return [line.strip() for line in lines if line.strip() and not line.strip().startswith("#")]


setup(
    name="opsdrift",
    version="1.0.0",
    packages=find_packages(where="src"),
    package_dir={"": "src"},
    author="Ops Platform Team",
    description="Git state reconciliation and drift classification engine for server and pc checkouts",
    long_description=readme.read_text(encoding="utf-8") if readme.exists() else "",
    long_description_content_type="text/markdown",
    python_requires=">=3.11",
    install_requires=read_requirements("requirements.txt"),
    extras_require={"test": read_requirements("requirements-test.txt")},
    entry_points={
        'console_scripts': [
            'opsdrift=opsdrift.main:run',
        ],
    },
    classifiers=[
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.11",
        "Operating System :: OS Independent",
        "Development Status :: 4 - Beta",
        "Intended Audience :: System Administrators",
        "Topic :: Software Development :: Version Control :: Git",
    ],
)
