from setuptools import setup


setup(
    name="cert-sync",
    version="0.3.0",
    description="Reconcile supplier certificates and append them to a formatted master workbook",
    packages=["cert_sync"],
    install_requires=[
        "pandas",
        "chardet",
        "openpyxl",
        "streamlit",
        "requests",
        "rapidfuzz",
    ],
    extras_require={
        "excel-legacy": ["xlrd"],
        "test": ["pytest"],
        "all": ["xlrd"],
    },
    entry_points={
        "console_scripts": [
            "cert-sync=cert_sync.cli:main",
        ]
    },
)
