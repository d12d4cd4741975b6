"""Allow ``python -m src.cli`` execution."""

from src.cli.books import main

main()
