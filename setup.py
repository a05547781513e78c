import os
import os.path
import setuptools # type: ignore

root_path = os.path.dirname(__file__)

with open(os.path.join(root_path, "README.md"), "r") as fh:
    long_description = fh.read()

setuptools.setup(
    name="starquest",
    version="0.1.0",
    description="Star Quest: the narrative decision engine for a space RPG. Quests and companion dialogue as requirement-gated branching graphs over a replayable world state.",
    long_description=long_description,
    long_description_content_type="text/markdown",
    packages=setuptools.find_packages(where="src"),
    package_dir={'': 'src'},

    package_data={
        'starquest.data': ['*.toml'],
    },
    include_package_data=True,
    zip_safe=False,
    classifiers=[
        "Programming Language :: Python :: 3",
        "Operating System :: OS Independent",
    ],
    install_requires=[
        "graphviz",
        "msgpack",
        "toml",
    ],
    extras_require={
        "test": ["pytest"],
    },
    python_requires='>=3.11',
    entry_points={
        'console_scripts': [
            'starquest = starquest.play:main',
        ],
    },
)
