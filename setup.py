"""
setup.py - Project Setup
Installs the kiosk client, the shared models and the reference directory
service.

  pip install -e .            kiosk + reference service
  pip install -e ".[test]"    plus the test runner

  kiosk status                console entry point (kiosk/app.py)
  python -m kiosk_server.api  reference directory service
  python -m pytest tests/ -v
"""

from setuptools import setup

REQUIREMENTS = [
    "flask>=2.3",
    "cryptography>=41.0",
    "numpy>=1.24",
    "requests>=2.31",
    "urllib3>=1.26",
]

TEST_REQUIREMENTS = [
    "pytest>=7.0",
]

setup(
    name="biotime-kiosk",
    version="1.0.0",
    description="Biometric time & attendance kiosk client with a reference directory service",
    packages=["kiosk", "kiosk_common", "kiosk_server"],
    python_requires=">=3.8",
    install_requires=REQUIREMENTS,
    extras_require={"test": TEST_REQUIREMENTS},
    entry_points={
        "console_scripts": [
            "kiosk=kiosk.app:main",
        ],
    },
)
