from setuptools import setup, find_packages

setup(
    name="bookmark_cleanup",
    version="0.1.0",
    packages=find_packages(include=["src", "src.*"]),
    install_requires=[
        "httpx>=0.25.0",
        "openai>=1.3.0",
        "python-dotenv>=1.0.0",
        "aiofiles>=23.2.0",
        "pydantic>=2.0.0",
        "PyYAML>=6.0",
        "typing_extensions>=4.5.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.4.0",
            "pytest-asyncio>=0.21.0",
        ],
    },
    author="Your Name",
    author_email="your.email@example.com",
    description="Утилита для очистки и реорганизации закладок с помощью AI",
    long_description=open("README.md", encoding="utf-8").read(),
    long_description_content_type="text/markdown",
    url="https://github.com/yourusername/bookmark_cleanup",
    classifiers=[
        "Programming Language :: Python :: 3",
        "License :: OSI Approved :: MIT License",
        "Operating System :: OS Independent",
    ],
    python_requires=">=3.9",
    entry_points={
        "console_scripts": [
            "bookmark_cleanup=src.main:main",
        ],
    },
)
