from setuptools import setup

setup(
    name='permuteseq',
    version='1.0',
    description='Keyed pseudo-random permutations of integer ranges and sequences.',
    python_requires='>=3.9',
    py_modules=['app', 'cipher', 'config', 'core_logic', 'db_manager', 'mixing', 'models'],
    install_requires=[
        'fastapi',
        'pydantic>=2',
        'slowapi',
        'uvicorn',
    ],
    extras_require={
        'test': ['pytest', 'httpx'],
    },
)
