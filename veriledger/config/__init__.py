"""Pipeline configuration: YAML settings plus environment overrides."""
