"""
Batch jobs: price event ingestion and the price scheduler.

Each job is stateless and independently triggerable from the HTTP API or the
cardboom-pricing CLI.
"""
