import pathlib
import setuptools


HERE = pathlib.Path(__file__).parent

README = (HERE/'README.md').read_text()

setuptools.setup(
    name='roster_synchronizer',
    version='1.0',
    description='Keeps per-school roster databases in step with a '
                'multi-tenant SIS API.',
    long_description=README,
    long_description_content_type='text/markdown',
    author='Brandon Sorensen',
    author_email='sorensen.12@gmail.com',
    license='MIT',
    classifiers=[
        'License :: OSI Approved :: MIT License',
        'Programming Language :: Python'
    ],
    packages=setuptools.find_packages(exclude=('test', 'test.*')),
    install_requires=[
        'requests',
        'SQLAlchemy>=1.4',
        'tzdata'
    ],
    extras_require={
        'test': ['responses']
    },
    python_requires=">=3.9"
)
