from setuptools import setup, find_packages

setup(
    name='releasekeeper',
    version='0.1.0',
    package_dir={'': 'src'},
    packages=find_packages('src'),
    python_requires='>=3.8',
    install_requires=[
        'requests',
        'urllib3',
        'PyYAML',
        'rich',
        'packaging',
        'platformdirs',
    ],
    extras_require={
        'test': [
            'pytest<9.1',
            'pytest-mock',
        ],
    },
    entry_points={
        'console_scripts': [
            'releasekeeper=releasekeeper.cli:main',
        ],
    },
)
