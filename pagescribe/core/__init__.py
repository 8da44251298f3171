"""Pipeline stages: validation, batch planning, execution, refinement and assembly."""
