"""Package entry point for ``python -m xsf_converter``."""

from xsf_converter.cli import main

if __name__ == "__main__":
    main()
