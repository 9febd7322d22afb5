"""
Pledgeflow Backer Import Pipeline

An idempotent ingestion pipeline that turns Kickstarter and Indiegogo
backer exports into backers, pledges, surveys and inventory, processed
asynchronously from a durable job queue.
"""

__version__ = "0.1.0"
