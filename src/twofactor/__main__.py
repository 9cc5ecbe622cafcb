"""Allow ``python -m twofactor``."""

from twofactor.cli import main

main()
