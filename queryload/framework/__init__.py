"""
Load-generation engine: models, query client, executor, coordinator,
run report aggregation, reporting and configuration.
"""
