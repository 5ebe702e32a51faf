"""Allow ``python -m shipline``."""

from shipline.cli.main import main

main()
