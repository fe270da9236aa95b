import sys

from MusyncEngine.cli import main


if __name__ == "__main__":
    sys.exit(main())
