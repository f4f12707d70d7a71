import re
from setuptools import setup, find_packages


def get_version():
    """
    Extracts the version number from the version.py file.
    """
    VERSION_FILE = 'sync_utils/version.py'
    mo = re.search(r'^__version__ = [\'"]([^\'"]*)[\'"]', open(VERSION_FILE, 'rt').read(), re.M)
    if mo:
        return mo.group(1)
    else:
        raise RuntimeError('Unable to find version string in {0}.'.format(VERSION_FILE))


install_requires = [
    'Django>=4.2',
    'django-manager-utils>=3.0.0',
    'celery',
]

tests_require = [
    'django-dynamic-fixture',
    'freezegun',
    'mock',
    'psycopg2-binary',
    'coverage',
    'pytest',
    'pytest-django',
]


setup(
    name='sync-utils',
    version=get_version(),
    description='Database-backed distributed locks that serialize per-account sync jobs.',
    long_description=open('README.rst').read(),
    keywords='django, database, lock, distributed lock, postgres, upsert',
    packages=find_packages(),
    classifiers=[
        'Programming Language :: Python',
        'Programming Language :: Python :: 3',
        'Intended Audience :: Developers',
        'License :: OSI Approved :: MIT License',
        'Operating System :: OS Independent',
        'Framework :: Django',
        'Framework :: Django :: 4.2',
    ],
    license='MIT',
    python_requires='>=3.8',
    install_requires=install_requires,
    extras_require={'dev': tests_require},
    include_package_data=True,
)
