from setuptools import setup

setup(
    name='aiid',
    version='0.1',
    packages=['aiid'],
    license='The MIT License (MIT)',
    description='Asyncio client for the Instance ID topic management API '
                '(batch subscribe / unsubscribe of registration tokens)',
    long_description=open('README.rst').read(),
    keywords='android fcm push notification topic instance id iid',
    python_requires='>=3.8',
    install_requires=['aiohttp'],
    tests_require=['mock'],
    extras_require={'test': ['mock', 'pytest']},
    test_suite='aiid.test_aiid',
)
