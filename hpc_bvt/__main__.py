"""Allow running as: python -m hpc_bvt"""

from hpc_bvt.cli import main

main()
