from setuptools import setup, find_packages

setup(
    name="celebrations",
    version="0.1.0",
    packages=find_packages(exclude=["tests", "tests.*"]),
    python_requires=">=3.10",
    install_requires=[
        "celery",
        "kombu",
        "sqlalchemy>=2.0",
        "psycopg2-binary",
        "python-dotenv",
        "pydantic>=2",
        "pydantic-settings",
        "prometheus-client",
        "httpx",
    ],
    extras_require={
        "test": [
            "pytest",
        ],
    },
)
