"""Pipeline templates, steps and the engine that runs them."""
