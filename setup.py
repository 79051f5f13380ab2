from setuptools import setup

setup(
    name='loom-fibers',
    version='0.1.0',
    description='Fiber scheduler bridging an embedded guest VM with asyncio',
    author='Loom contributors',
    package_dir={'loom': 'src/loom'},
    packages=['loom', 'loom.modules', 'loom.cli'],
    include_package_data=True,
    python_requires='>=3.9',
    install_requires=[
        'click>=7.0',
        'rich>=10.0'
    ],
    extras_require={
        'test': ['pytest>=7.0'],
    },
    entry_points={
        'console_scripts': [
            'loom = loom.cli.main:cli'
        ]
    },
    classifiers=[
        'Programming Language :: Python :: 3',
    ],
)
