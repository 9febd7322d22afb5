#!/usr/bin/env python3

"""
Continuous worker that processes queued CSV chunks.
"""

from dotenv import load_dotenv

load_dotenv()

from pledgeflow.ingestion.worker import main

if __name__ == '__main__':
    main()
