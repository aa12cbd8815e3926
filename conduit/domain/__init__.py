"""Domain layer: entities, errors and interfaces."""
