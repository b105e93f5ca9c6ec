# setup.py
from setuptools import setup, find_packages
from pathlib import Path
this_directory = Path(__file__).parent
long_description = (this_directory / "README.md").read_text(encoding="utf-8")

setup(
    name="idscan",
    version="0.1.0",
    package_dir={"": "src"},
    packages=find_packages(where="src", include=["idscan", "idscan.*"]),
    description="Capture a document with the camera, OCR it with Tesseract and pull out its ID number.",
    long_description=long_description,
    long_description_content_type='text/markdown',
    python_requires=">=3.9",

    package_data={
        "idscan": ["tessdata/*.traineddata", "tessdata/README.md"],
    },
    include_package_data=True,

    install_requires=[
        "pytesseract",
        "opencv-python",
        "tqdm",
        "Pillow",
        "numpy",
        "python-slugify",
    ],
    extras_require={
        "test": ["pytest"],
    },
    entry_points={
        'console_scripts': [
            'idscan=idscan.cli:run',
        ],
    },
)
