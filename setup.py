from setuptools import find_packages, setup

setup(
    name='pkl-proxy',
    packages=find_packages(exclude=['tests', 'tests.*']),
    version=open('VERSION').read().strip(),
    description='A local proxy serving private GitHub release assets, authenticated as a GitHub App',
    long_description=open('README.md').read(),
    long_description_content_type='text/markdown',
    python_requires='>=3.10',
    install_requires=[
        'figcan',
        'flask',
        'flask-classful',
        'marshmallow>=3.18',
        'pyyaml',
        'PyJWT[crypto]',
        'cryptography',
        'requests',
        'python-dotenv',
        'typing-extensions',
    ],
    extras_require={
        'test': [
            'pytest',
            'responses',
        ],
    },
    include_package_data=True
)
