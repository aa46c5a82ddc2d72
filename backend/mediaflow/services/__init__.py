"""Services: AI clients, capability plugins, media processors and the pipeline."""
