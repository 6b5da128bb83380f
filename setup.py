import sys

from os import path
from setuptools import setup

if sys.version_info < (3,9):
    sys.exit("The current Python version is less than 3.9. Exiting.")

requirements_filepath = path.join(path.dirname(path.abspath(__file__)), "requirements.txt")
with open(requirements_filepath) as f:
    requirements = f.read().split()

setup(name='xdrinternals',
      version='1.0.0',
      description='Client for the internal APIs of the Microsoft Defender XDR portal',
      classifiers=[
          'Intended Audience :: Information Technology',
          'Programming Language :: Python :: 3.9',
          'Programming Language :: Python :: 3.10',
          'Programming Language :: Python :: 3.11',
          'Programming Language :: Python :: 3.12',
          'Programming Language :: Python :: 3.13',
      ],
      packages=['xdrinternals'],
      python_requires='>=3.9',
      install_requires=requirements,
      extras_require={
          'test': ['pytest']
      },
      zip_safe=False,
      include_package_data=True,
      entry_points={
          'console_scripts': ['xdrinternals=xdrinternals.main:main']
      }
    )
