"""Package entry point for ``python -m subtitle_converter``.

Delegates to the CLI's main(), which parses the subcommand and exits
with its status code.
"""

from subtitle_converter.cli import main

if __name__ == "__main__":
    main()
