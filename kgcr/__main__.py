"""Run the kgcr command line tool with `python -m kgcr`."""

from kgcr.tool.kgcr import main

if __name__ == "__main__":
    main()
