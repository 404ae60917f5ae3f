import sys

from rag_ingest.cli import main

sys.exit(main())
