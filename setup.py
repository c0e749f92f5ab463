import os, sys, subprocess, unittest
from setuptools import setup

setup(name='bagmodel',
      version='0.1',
      description="bagmodel: a Python library for creating, reading and updating BagIt bags",
      author="Ray Plante",
      author_email="raymond.plante@nist.gov",
      scripts=[ ],
      packages=['bagmodel', 'bagmodel.access', 'bagmodel.testing'],
      install_requires=[ "bagit", "fs", "requests", "setuptools<81" ],
      test_suite="tests.suite",
      test_runner="unittest:TextTestRunner"
)
