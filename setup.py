from setuptools import setup, find_namespace_packages

# Function to read the requirements.txt file
def parse_requirements(filename):
    with open(filename, 'r') as file:
        return [line.strip() for line in file if line.strip() and not line.startswith('#')]

setup(
    name='libnetstalker',
    version='0.1.0',
    description='Active ARP-based discovery of devices on the local network',
    long_description=open('README.md').read(),
    long_description_content_type='text/markdown',
    # The package directory has no __init__.py
    packages=find_namespace_packages(where='src', include=['libnetstalker', 'libnetstalker.*']),
    package_dir={'': 'src'},
    classifiers=[
        'Programming Language :: Python :: 3',
        'License :: OSI Approved :: MIT License',
        'Operating System :: OS Independent',
    ],
    python_requires='>=3.8',
    install_requires=parse_requirements('requirements.txt'),  # Include requirements from requirements.txt
    entry_points={
        'console_scripts': [
            'netstalker=libnetstalker.core:main',
        ],
    },
)
