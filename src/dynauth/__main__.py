"""Allow ``python -m dynauth``."""

from dynauth.cli.main import main

main()
