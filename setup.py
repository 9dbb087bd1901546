#!/usr/bin/env python

import setuptools

setuptools.setup(
    name="parley",
    version="0.3.0",
    description="A tool-calling chat assistant core: LLM provider adapters, MCP tool servers, history and summarization.",
    packages=setuptools.find_packages(include=["parley", "parley.*"]),
    classifiers=[
        "Programming Language :: Python :: 3",
        "License :: OSI Approved :: MIT License",
        "Operating System :: OS Independent",
    ],
    install_requires=['openai>=1.30',
                      'google-generativeai>=0.7',
                      'mcp>=1.8',
                      'httpx>=0.27',
                      'beautifulsoup4>=4.12',
                      'Pillow>=9.3.0',
                      'tiktoken>=0.7',
                      'termcolor>=2.0',
                      'colorama>=0.4; platform_system=="Windows"',
                      ],
    extras_require={
        'test': ['pytest>=7'],
    },
    python_requires='>=3.10',

    entry_points={
        'console_scripts': [
            'parley-mcp-check = parley.cli:main',
        ],
    },


)
