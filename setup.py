"""
Packaging for the FPGA control client.

Tests live beside the code as *_test.py modules:

    pip install -e .[test]
    pytest src --doctest-modules
"""

from setuptools import setup

setup(
    name='jelly-fpga-client',
    version='0.1.0',
    description='Client for remote FPGA resources: firmware management and typed memory and register access.',
    url='',
    author='',
    author_email='',
    license='LGPL',
    package_dir={'': 'src'},
    packages=['jellyfpga', 'jellyfpga.conduit', 'jellyfpga.config', 'jellyfpga.connector',
              'jellyfpga.protocol', 'jellyfpga.test'],
    package_data={'jellyfpga': ['*.cfg'], 'jellyfpga.config': ['*.cfg']},
    python_requires='>=3.6',
    install_requires=['configobj'],
    extras_require={
        'test': ['pytest', 'PyHamcrest>=2.0.3', 'timeout-decorator'],
    },
    zip_safe=False,
)
