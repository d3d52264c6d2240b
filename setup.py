from setuptools import setup, find_packages


setup(
    name="packd",
    version="0.1",
    packages=find_packages(include=["packd", "packd.*"]),
    description="Single-file directory archives with per-entry zstd compression and optional RSA/AES-GCM sealing.",
    author="xerosic",
    python_requires=">=3.8",
    install_requires=[
        "pycryptodomex>=3.23.0",
        "zstandard>=0.22.0",
    ],
    entry_points={
        "console_scripts": [
            "packd=packd.cli:main",
        ]
    },
)
