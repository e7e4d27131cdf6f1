import setuptools
import os.path

with open('README.md', 'r', encoding='UTF-8') as f:
    long_description = f.read()

version_txt_path = os.path.join('digicert_codesigning_integration', 'support', 'version.txt')
with open(version_txt_path, 'r', encoding='UTF-8') as f:
    version = f.read().strip()

setuptools.setup(
    name='digicert-codesigning-integration',
    version=version,
    license='Apache 2.0',
    description='DigiCert Signing Manager: CI code signing integration',
    long_description=long_description,
    long_description_content_type='text/markdown',
    platforms='any',
    zip_safe=False,  # we require support/*
    packages=['digicert_codesigning_integration'],
    package_data={'digicert_codesigning_integration': ['support/*']},
    entry_points={
        'console_scripts': [
            'digicert-version=digicert_codesigning_integration.version_command:main',  # noqa:E501
            'digicert-install-smctl=digicert_codesigning_integration.smctl_install_command:main',  # noqa:E501
            'digicert-sign-smctl=digicert_codesigning_integration.smctl_sign_command:main',  # noqa:E501
        ]
    },
    install_requires=[
        'envparse>=0.2.0,<0.3',
        'requests>=2.25,<3',
    ],
    extras_require={
        'test': ['pytest'],
    },
    classifiers=[
        'Programming Language :: Python :: 3',
        'License :: OSI Approved :: Apache Software License',
        'Operating System :: OS Independent',
    ],
    python_requires='>=3.8',
)
