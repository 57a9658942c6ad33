from setuptools import setup, find_packages

setup(
    name='modlock',
    version='0.1.0',
    description='Reproducible, Nix-compatible lockfiles for Go modules',
    package_dir={'': 'src'},
    packages=find_packages(where='src'),
    python_requires='>=3.8',
    install_requires=[
        'requests',
        'PyYAML',
        'urllib3',
        'platformdirs',
        'rich',
        'packaging',
    ],
    extras_require={
        'test': [
            'pytest<9',
            'pytest-mock',
        ],
    },
    entry_points={
        'console_scripts': [
            'modlock=modlock.cli:main',
        ],
    },
)
