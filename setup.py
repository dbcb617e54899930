"""
Setup script for the mqtt-feed service
"""

from setuptools import setup, find_packages

with open("README.md", "r", encoding="utf-8") as fh:
    long_description = fh.read()

setup(
    name="mqtt-feed",
    version="1.0.0",
    author="YuDev",
    description="Publishes templated status messages to an MQTT broker",
    long_description=long_description,
    long_description_content_type="text/markdown",
    package_dir={"": "feed-publisher"},
    packages=find_packages(where="feed-publisher", exclude=["tests", "tests.*"]),
    py_modules=["app", "config"],
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: Developers",
        "License :: OSI Approved :: MIT License",
        "Operating System :: OS Independent",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
    ],
    python_requires=">=3.10",
    install_requires=[
        "paho-mqtt>=2.0.0",
        "pydantic>=2.5.0",
        "PyYAML>=6.0",
        "redis[hiredis]>=5.0.1",
        "fastapi>=0.104.0",
        "uvicorn>=0.24.0",
    ],
    extras_require={
        "dev": [
            "pytest>=7.4.0",
            "pytest-asyncio>=0.21.0",
            "pytest-cov>=4.1.0",
            "httpx>=0.25.0",
        ]
    },
    entry_points={
        "console_scripts": [
            "mqtt-feed=app:run_main",
        ]
    },
    include_package_data=True,
    zip_safe=False,
)
