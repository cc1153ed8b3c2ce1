"""artshelf - incremental ingestion of artwork metadata corpora into a relational store."""

__version__ = "0.1.0"
