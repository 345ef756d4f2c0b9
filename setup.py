from setuptools import setup, find_packages
from pathlib import Path

package_name = 'pg-failover-operator'
description = (
    'Kubernetes Operator core that moves Patroni-managed PostgreSQL pods off '
    'retiring nodes and coordinates switchovers.'
)
author = 'pg-failover-operator developers'
license = 'MIT'
pypi_classifiers = [
    'Development Status :: 4 - Beta',
    'License :: OSI Approved :: MIT License',
    'Programming Language :: Python :: 3.10'
]
keywords = ['kubernetes', 'postgresql', 'patroni']
readme = Path(__file__).parent / 'README.rst'

# Core dependencies
install_requires = [
    'kopf>=1.37',
    'kubernetes>=24.2.0',
    'requests>=2.28',
    'structlog>=23.1',
]

# Test dependencies
tests_require = [
    'pytest>=7.4',
]
tests_require += install_requires

# Optional dependencies (like for dev)
extras_require = {
    # For development environments
    'dev': tests_require,
}

setup(
    name=package_name,
    version='0.1.0',
    description=description,
    long_description=readme.read_text(),
    author=author,
    license=license,
    classifiers=pypi_classifiers,
    keywords=keywords,
    python_requires='>=3.10',
    package_dir={'': 'src'},
    packages=find_packages(where='src', exclude=['docs', 'tests']),
    install_requires=install_requires,
    tests_require=tests_require,
    extras_require=extras_require,
    include_package_data=True
)
