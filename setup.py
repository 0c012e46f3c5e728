from setuptools import setup, find_packages

with open('README.md', 'r') as readme:
    long_description = readme.read()

setup(
    name='isonurbs',
    version='1.0.0',
    description='Multi-patch NURBS meshes for isogeometric analysis.',
    long_description=long_description,
    long_description_content_type='text/markdown',
    packages=find_packages(include=['isonurbs', 'isonurbs.*']),
    install_requires=['numpy', 'numba', 'scipy', 'matplotlib', 'meshio', 'tqdm'],
    extras_require={'test': ['pytest']},
    classifiers=['Programming Language :: Python :: 3',
                 'Operating System :: OS Independent'],

)
