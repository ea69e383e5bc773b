"""Pure domain helpers: clock, currency registry, minor-unit arithmetic."""
