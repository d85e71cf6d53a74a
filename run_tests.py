#!/usr/bin/env python
"""
Test runner script for the whole project
Usage: python run_tests.py [app label ...]
"""
import os
import sys

import django
from django.conf import settings
from django.test.utils import get_runner

APPS = [
    'bizhub.core',
    'bizhub.crm',
    'bizhub.projects',
    'bizhub.billing',
    'bizhub.messaging',
    'bizhub.reports',
]

if __name__ == "__main__":
    os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'bizhub.config.settings')
    django.setup()
    TestRunner = get_runner(settings)
    test_runner = TestRunner()
    failures = test_runner.run_tests(sys.argv[1:] or APPS)
    sys.exit(bool(failures))
