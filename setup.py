#!/usr/bin/env python
# -*- encoding: utf-8 -*-
import io
import re
from os.path import dirname, join

from setuptools import find_packages, setup


def read(*names, **kwargs):
    return io.open(
        join(dirname(__file__), *names),
        encoding=kwargs.get('encoding', 'utf8')
    ).read()


setup(
    name='bcsim',
    version='1.0.0',
    description='Breast cancer screening cohort microsimulation of costs and QALYs',
    long_description=re.compile(
        '^.. start-badges.*^.. end-badges', re.M | re.S).sub('', read('README.rst')),
    long_description_content_type="text/x-rst",
    author='bcsim Model Development Team',
    packages=find_packages('src'),
    package_dir={'': 'src'},
    include_package_data=True,
    zip_safe=False,
    classifiers=[
        # complete classifier list: http://pypi.python.org/pypi?%3Aaction=list_classifiers
        'Development Status :: 3 - Alpha',
        'Intended Audience :: Science/Research',
        'License :: Other/Proprietary License',
        'Operating System :: OS Independent',
        'Programming Language :: Python :: 3',
        'Programming Language :: Python :: 3.10',
    ],
    keywords=[
        'microsimulation', 'markov', 'health economics', 'breast cancer',
    ],
    python_requires='>=3.10',
    install_requires=[
        'numpy',
        'pandas',
        'click',
        'dill',
        'matplotlib',
    ],
    extras_require={
        'tests': ['pytest'],
    },
    entry_points='''
        [console_scripts]
        bcsim=bcsim.cli:cli
    '''
)
