"""Row extraction helpers that feed raw rows into the pipeline."""
