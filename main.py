import sys

from bridge_ingestion.cli import main

if __name__ == "__main__":
    sys.exit(main())
