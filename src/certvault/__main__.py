"""Allow ``python -m certvault``."""

from certvault.cli.main import main

main()
