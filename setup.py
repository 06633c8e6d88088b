import setuptools

with open("README.md") as f:
    long_description = f.read()

setuptools.setup(
    name="sftpbox",
    version="1.0.0",
    description="Serve a local directory over SFTP to a single authorized user",
    long_description=long_description,
    long_description_content_type="text/markdown",
    packages=setuptools.find_namespace_packages(include=["sftpbox", "sftpbox.*"]),
    python_requires=">=3.8",
    install_requires=[
        "aiofiles>=23.1",
        "asyncssh>=2.14.1",
    ],
    extras_require={
        "test": [
            "pytest>=7",
            "pytest-asyncio>=0.21",
        ]
    },
    entry_points = {
        "console_scripts": [
            'sftpbox-serve=sftpbox.server.serve:serve'
        ]
    },
    include_package_data=True,
)
