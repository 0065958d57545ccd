"""
HPC Pack REST event BVT - main entry point.

Equivalent to the hpc-bvt console script.
"""

from hpc_bvt.cli import main


if __name__ == "__main__":
    main()
