#!/usr/bin/python3

from setuptools import setup

setup(
    name='ova-inventory',
    version='1.0',
    description='A tool to list the disk images packed inside OVA virtual appliance archives',
    python_requires='>=3.8',
    install_requires=[],
    extras_require={
        'test': ['pytest'],
    },
    packages=['ova_inventory'],
    entry_points={
        'console_scripts': ['ova-inventory=ova_inventory.main:main'],
    },
)
