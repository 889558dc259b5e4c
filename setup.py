from setuptools import find_packages
from setuptools import setup


extras_require = {
    "test": [
        "pytest>=7.0",
        "opentelemetry-sdk>=1.20",
        "opentelemetry-test-utils>=0.41b0",
    ],
}

setup(
    name="redistrace",
    description="OpenTelemetry spans and prometheus metrics for redis-py commands",
    long_description=open("README.md").read(),
    long_description_content_type="text/markdown",
    license="BSD",
    version="0.1.0",
    packages=find_packages(exclude=["tests", "tests.*"]),
    python_requires=">=3.8",
    install_requires=[
        "redis>=4.1.0",
        "opentelemetry-api>=1.20",
        "opentelemetry-semantic-conventions>=0.41b0",
        "prometheus-client>=0.12.0",
        "python-json-logger>=2.0,<3.0",
    ],
    extras_require=extras_require,
    package_data={"redistrace": ["py.typed"]},
    zip_safe=False,
    classifiers=[
        "Development Status :: 4 - Beta",
        "License :: OSI Approved :: BSD License",
        "Operating System :: POSIX :: Linux",
        "Programming Language :: Python",
        "Programming Language :: Python :: 3.8",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Topic :: Software Development :: Libraries",
        "Topic :: System :: Monitoring",
    ],
)
