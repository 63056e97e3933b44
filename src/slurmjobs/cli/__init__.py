"""Command-line interface for slurmjobs."""
