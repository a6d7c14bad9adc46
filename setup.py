from setuptools import setup, find_packages

setup(
    name='tag_backup_toolkit',
    version='0.1.0',
    description='Backup and restore of PLC tag values to delimited text files',
    packages=find_packages(exclude=['tests', 'tests.*']),
    python_requires='>=3.9',
    install_requires=[
        'lxml>=4.9.0',
    ],
    extras_require={
        'dev': ['pytest>=7.0'],
        'mcp': ['mcp[cli]>=1.2.0,<2'],
    },
    entry_points={
        'console_scripts': [
            'tag-backup-mcp-server=tag_backup_toolkit.mcp_server:main',
        ],
    },
)
