"""Allow ``python -m vecsearch.cli`` execution."""

from vecsearch.cli.manage import main

main()
