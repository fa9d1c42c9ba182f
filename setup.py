from setuptools import setup

setup(
    url='none',
    author='Matt Haggard',
    author_email='haggardii@gmail.com',
    name='txcasticket',
    version='0.2',
    packages=[
        'txcasticket', 'txcasticket.test', 'twisted.plugins',
    ],
    py_modules=['setup_couchdb'],
    install_requires=[
        'klein',
        'python-dateutil',
        'service_identity',
        'pyOpenSSL',
        'treq',
        'Twisted>=16.4.0',
        'werkzeug',
        'zope.interface',
    ],
    extras_require={
        'test': ['mock'],
    },
)
