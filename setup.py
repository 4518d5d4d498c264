from setuptools import setup, find_packages

setup(
    name="taskboard",
    version="1.0.0",
    description="Kanban task board API with optimistic concurrency control",
    author="taskboard maintainers",
    packages=find_packages(exclude=["tests", "tests.*"]),
    py_modules=["api_server", "config"],
    install_requires=[
        "fastapi>=0.104.0",
        "uvicorn>=0.24.0",
        "pydantic>=2.5.0",
        "sqlalchemy>=2.0.0",
        "python-dotenv>=1.0.0",
        "requests>=2.31.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.4.0",
            "httpx>=0.25.0",
        ],
    },
    python_requires=">=3.8",
)
