"""Domain layer - value objects, entities, errors and core services."""
