from setuptools import setup, find_packages

setup(
    name="promdump",
    version="0.2.0",
    package_dir={"": "src"},
    packages=find_packages(where="src"),
    install_requires=[
        "kubernetes>=26.1.0",
        "requests>=2.28.0",
        "urllib3>=1.26.0",
        "websocket-client>=1.5.0",
        "PyYAML>=6.0",
        "tabulate>=0.9.0",
        "python-dotenv>=1.0.0",
        "prometheus-client>=0.17.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.0.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "kubectl-promdump=promdump.cli.main:main",
            "promdump=promdump.cli.extractor:main",
        ],
    },
    python_requires=">=3.8",
)
