from setuptools import setup


setup(
    name="rabv-redcap",
    version="0.3.0",
    description="Curate rabies laboratory exports into REDCap import forms",
    packages=["rabv_redcap"],
    package_data={
        "rabv_redcap": [
            "bundled/*.csv",
        ]
    },
    include_package_data=True,
    install_requires=[
        "pandas",
        "chardet",
        "openpyxl",
        "streamlit",
        "requests",
    ],
    entry_points={
        "console_scripts": [
            "rabv-redcap=rabv_redcap.cli:main",
        ]
    },
)
