#!/usr/bin/env python3

import pathlib

from setuptools import setup, find_packages


PROJ_ROOT = pathlib.Path(__file__).parent


def readme():
    with open(PROJ_ROOT / 'README.rst', 'r', encoding='utf-8') as readme:
        return readme.read()


setup(
    name='questdb-membench',
    version='0.1.0',
    description='Memory benchmark for the QuestDB Python client write path',
    long_description=readme(),
    long_description_content_type='text/x-rst',
    platforms=['any'],
    python_requires='>=3.8',
    install_requires=[
        'questdb>=2.0.0',
        'psutil',
    ],
    entry_points={
        'console_scripts': [
            'membench=membench.benchmark:main',
        ],
    },
    zip_safe=False,
    package_dir={'': 'src'},
    test_suite="test",
    packages=find_packages('src', exclude=['test']))
