# setup.py
import os
from setuptools import setup, find_packages

# Function to read the requirements.txt file
def parse_requirements(filename="requirements.txt"):
    with open(os.path.join(os.path.dirname(__file__), filename), 'r') as f:
        return [line.strip() for line in f if line.strip() and not line.startswith('#')]

# Read the contents of your README file for long description
try:
    with open(os.path.join(os.path.dirname(__file__), 'README.md'), encoding='utf-8') as f:
        long_description = f.read()
except FileNotFoundError:
    long_description = "Keeps AI code-review annotations on a pull request in sync with the latest findings."

# Get version from package __init__.py
version = {}
with open(os.path.join(os.path.dirname(__file__), "src", "ai_review_sync", "__init__.py")) as fp:
    exec(fp.read(), version)

setup(
    name='ai-review-sync',
    version=version['__version__'],
    description='Diff-aware synchronization of AI review annotations on pull requests, as a Drone CI plugin.',
    long_description=long_description,
    long_description_content_type='text/markdown',
    license='Apache License 2.0',
    package_dir={'': 'src'},
    packages=find_packages(where='src', exclude=['tests*', '*.tests', '*.tests.*']),
    install_requires=parse_requirements(),
    extras_require={
        'test': ['pytest>=7.0'],
    },
    python_requires='>=3.8',
    entry_points={
        'console_scripts': [
            'ai-review-sync = ai_review_sync.main:main_cli',
        ],
    },
    classifiers=[
        'Development Status :: 3 - Alpha',
        'Intended Audience :: Developers',
        'License :: OSI Approved :: Apache Software License',
        'Operating System :: OS Independent',
        'Programming Language :: Python :: 3',
        'Programming Language :: Python :: 3.8',
        'Programming Language :: Python :: 3.9',
        'Programming Language :: Python :: 3.10',
        'Programming Language :: Python :: 3.11',
        'Programming Language :: Python :: 3.12',
        'Topic :: Software Development :: Quality Assurance',
    ],
    keywords='drone ci code review pull request annotations diff github',
)
