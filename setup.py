from setuptools import setup, find_packages

setup(
    name="nut-scanner",
    version="2.8.3",
    packages=find_packages(where="src"),
    package_dir={"": "src"},
    install_requires=[
        "pyyaml>=6.0",
        "psutil>=5.9.3",
    ],
    extras_require={
        "snmp": ["pysnmp>=7.1"],
        "usb": ["pyusb>=1.2.1"],
        "serial": ["pyserial>=3.5"],
        "avahi": ["zeroconf>=0.131.0"],
        "all": [
            "pysnmp>=7.1",
            "pyusb>=1.2.1",
            "pyserial>=3.5",
            "zeroconf>=0.131.0",
        ],
        "dev": [
            "pytest>=7.4.0",
            "pytest-asyncio>=0.21.0",
            "pytest-cov>=4.1.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "nut-scanner=nut_scanner.cli:main",
        ],
    },
    python_requires=">=3.11",
)
