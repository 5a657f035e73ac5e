import os, platform
from setuptools import setup, Extension
from Cython.Build import cythonize

# Package name
__package__ = "pgcycli"


# Create Extension
def extension(src: str, *extra_compile_args: str) -> Extension:
    # Prep name
    if "/" in src:
        folders: list[str] = src.split("/")
        file: str = folders.pop(-1)
    else:
        folders: list[str] = []
        file: str = src
    if "." in file:  # . remove extension
        file = file.split(".")[0]
    name = ".".join([__package__, *folders, file])

    # Prep source
    if "/" in src:
        file = src.split("/")[-1]
    else:
        file = src
    source = os.path.join("src", __package__, *folders, file)

    # Extra arguments
    extra_args = list(extra_compile_args) if extra_compile_args else None

    # Create extension
    return Extension(name, [source], extra_compile_args=extra_args)


# Build Extensions
if platform.system() == "Windows":
    extensions = [
        # fmt: off
        extension("aio/connection.py"),
        extension("constants/CONN.py"),
        extension("constants/FORMAT.py"),
        extension("constants/OID.py"),
        extension("constants/STATUS.py"),
        extension("_connect.py"),
        extension("_optionfile.py"),
        extension("errors.py"),
        extension("protocol.py"),
        extension("result.py"),
        extension("transcode.py"),
        extension("utils.py"),
        # fmt: on
    ]
else:
    extensions = [
        # fmt: off
        extension("aio/connection.py", "-Wno-unreachable-code", "-Wno-incompatible-pointer-types"),
        extension("constants/CONN.py"),
        extension("constants/FORMAT.py"),
        extension("constants/OID.py"),
        extension("constants/STATUS.py"),
        extension("_connect.py", "-Wno-unreachable-code", "-Wno-incompatible-pointer-types"),
        extension("_optionfile.py", "-Wno-unreachable-code"),
        extension("errors.py", "-Wno-unreachable-code"),
        extension("protocol.py", "-Wno-unreachable-code"),
        extension("result.py", "-Wno-unreachable-code", "-Wno-sign-compare"),
        extension("transcode.py", "-Wno-unreachable-code"),
        extension("utils.py", "-Wno-unreachable-code"),
        # fmt: on
    ]

# Build
setup(
    ext_modules=cythonize(
        extensions,
        compiler_directives={"language_level": "3"},
        annotate=True,
    ),
)
